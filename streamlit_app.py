import logging
import os
from typing import Callable, Dict

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from app_session import SessionContext, Tab
from brand_exposure import (
    CsvFormatError,
    Dataset,
    EmptyOrHeaderOnly,
    MissingColumns,
    build_dashboard,
    frames_for_brand,
    parse_brand_csv,
    rank_frames,
    top_brand_candidates,
)
from reasoning_service import (
    API_KEY_ENV_VARS,
    DEFAULT_PROVIDER,
    default_credential,
    find_best_frame,
    get_chatbot_response,
)

# --- Logging Configuration ---
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"), format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

COLAB_NOTEBOOK_URL = "https://colab.research.google.com/drive/1334s8wph1eESCw8SmhSjmgTXmEgE8Gnc?usp=sharing"
CHART_COLORS = ["#06b6d4", "#8884d8", "#82ca9d", "#ffc658", "#ff8042", "#00C49F", "#FFBB28", "#AF19FF"]


# -----------------------
# Cached derivations
# -----------------------
@st.cache_data(show_spinner=False)
def load_dataset(csv_text: str) -> Dataset:
    return parse_brand_csv(csv_text)


@st.cache_data(show_spinner=False)
def load_candidates(csv_text: str):
    return top_brand_candidates(csv_text)


# -----------------------
# Chart helpers
# -----------------------
def build_brand_bar(data: pd.DataFrame, value_col: str, axis_title: str, color: str) -> go.Figure:
    # plotly draws horizontal bars bottom-up; reverse so rank 1 sits on top
    ordered = data.iloc[::-1]
    fig = go.Figure(go.Bar(
        x=ordered[value_col],
        y=ordered["brand"],
        orientation="h",
        marker=dict(color=color),
        hovertemplate="%{y}: %{x:,.4~f}<extra></extra>",
    ))
    fig.update_layout(
        template="plotly_dark",
        height=340,
        margin=dict(l=10, r=10, t=10, b=10),
        xaxis_title=axis_title,
    )
    return fig


def build_category_pie(data: pd.DataFrame, value_col: str) -> go.Figure:
    fig = go.Figure(go.Pie(
        labels=data["category"],
        values=data[value_col],
        marker=dict(colors=CHART_COLORS),
        textinfo="percent",
        hovertemplate="%{label}: %{value:,.4~f}<extra></extra>",
        sort=False,
    ))
    fig.update_layout(template="plotly_dark", height=340, margin=dict(l=10, r=10, t=10, b=10))
    return fig


def _empty_state(title: str, body: str):
    st.markdown(f"### {title}")
    st.caption(body)


def _active_file(session: SessionContext):
    st.markdown(f"Active File: **{session.csv_file_name}**")


# -----------------------
# Session helpers
# -----------------------
def _session() -> SessionContext:
    if "session" not in st.session_state:
        st.session_state.session = SessionContext(credential=default_credential())
    return st.session_state.session


SESSION_KEYS = ["session", "messages", "chat_fingerprint", "chat_pending", "chat_question", "pending_question",
                "frame_pending", "frame_brand", "frame_result", "frame_error", "brand_input"]


def _reset_session():
    for k in SESSION_KEYS:
        if k in st.session_state:
            del st.session_state[k]
    # a fresh key gives a fresh, empty uploader
    st.session_state.upload_nonce = st.session_state.get("upload_nonce", 0) + 1


def render_sidebar(session: SessionContext):
    with st.sidebar:
        st.header("Data & Access")
        uploaded = st.file_uploader(
            "Upload brand exposure CSV",
            type=["csv"],
            accept_multiple_files=False,
            key=f"csv_upload_{st.session_state.get('upload_nonce', 0)}",
        )
        if uploaded is not None:
            try:
                text = uploaded.getvalue().decode("utf-8-sig")
            except UnicodeDecodeError:
                st.error("Could not read uploaded file. Please upload a UTF-8 encoded .csv file.")
            else:
                if text != session.csv_text or uploaded.name != session.csv_file_name:
                    session.csv_text = text
                    session.csv_file_name = uploaded.name
                    logger.info("Loaded %s (%d chars)", uploaded.name, len(text))

        key_label = API_KEY_ENV_VARS.get(DEFAULT_PROVIDER, "API key")
        session.credential = st.text_input(
            f"API key ({DEFAULT_PROVIDER})",
            value=session.credential,
            type="password",
            help=f"Used only for this session. Pre-filled from {key_label} when set.",
        )
        if not session.has_credential:
            st.caption("An API key is required for the chatbot and the best frame finder.")
        if not session.has_csv:
            st.caption("A CSV file is required for every tool.")

        if st.button("Reset", key="reset", width="stretch"):
            _reset_session()
            st.rerun()


# -----------------------
# Tab: Brand Exposure Analytics
# -----------------------
def render_analytics(session: SessionContext):
    st.markdown("## Brand Exposure Analytics in Cricket")
    st.write(
        "Unlock insights into your brand's visibility during cricket matches. "
        "Run the analysis notebook on your broadcast frames, then upload the resulting CSV "
        "in the sidebar to explore it here."
    )
    st.link_button("Open Colab Notebook", COLAB_NOTEBOOK_URL)
    if session.has_csv:
        st.success(f"Loaded {session.csv_file_name}. Open the Insights Dashboard to see the charts.")


# -----------------------
# Tab: CSV Chatbot
# -----------------------
def _sync_transcript(session: SessionContext):
    fingerprint = session.fingerprint()
    if st.session_state.get("chat_fingerprint") != fingerprint:
        st.session_state.chat_fingerprint = fingerprint
        st.session_state.messages = [{
            "role": "assistant",
            "content": f'File "{session.csv_file_name}" loaded. How can I help you analyze this data?',
        }]
        st.session_state.chat_pending = False
        st.session_state.pending_question = None


def _submit_question():
    question = (st.session_state.get("chat_question") or "").strip()
    if not question or st.session_state.get("chat_pending"):
        return
    st.session_state.messages.append({"role": "user", "content": question})
    st.session_state.pending_question = question
    st.session_state.chat_pending = True


def _answer_pending_question(session: SessionContext):
    question = st.session_state.pending_question
    with st.chat_message("assistant"):
        with st.spinner("Analyzing..."):
            reply = get_chatbot_response(session.csv_text, question, session.credential)
            # recorded before the spinner exits
            st.session_state.messages.append({"role": "assistant", "content": reply})
            st.session_state.pending_question = None
            st.session_state.chat_pending = False


def render_chat(session: SessionContext):
    if not session.has_csv or not session.has_credential:
        _empty_state("Chatbot Setup",
                     "Please provide your API key and upload a CSV file in the sidebar to begin your analysis.")
        return

    _sync_transcript(session)
    _active_file(session)
    for msg in st.session_state.messages:
        with st.chat_message(msg["role"]):
            st.markdown(msg["content"])

    pending = st.session_state.chat_pending
    st.chat_input("Ask a question about your data...", key="chat_question",
                  on_submit=_submit_question, disabled=pending)
    if pending:
        _answer_pending_question(session)
        st.rerun()


# -----------------------
# Tab: Insights Dashboard
# -----------------------
def render_dashboard(session: SessionContext):
    if not session.has_csv:
        _empty_state("No CSV File Loaded", "Please upload a CSV file in the sidebar to generate the dashboard.")
        return

    try:
        dataset = load_dataset(session.csv_text)
    except MissingColumns as e:
        st.error(f"Error: {e}")
        return
    except EmptyOrHeaderOnly:
        st.info("The uploaded CSV has no data rows to chart.")
        return

    data = build_dashboard(dataset)
    st.markdown("## Insights Dashboard")
    st.caption(f"Displaying key metrics for {session.csv_file_name}")
    if dataset.skipped_rows:
        st.caption(f"{len(dataset):,} rows used, {dataset.skipped_rows:,} rows without a brand, category or numeric c_li ignored.")
    if not len(dataset):
        st.info("No rows with a brand, category and numeric c_li were found.")
        return

    col1, col2 = st.columns(2)
    with col1:
        st.markdown("#### Top 10 Brands by Frequency")
        st.plotly_chart(build_brand_bar(data.top_brands_by_frequency, "frequency", "Frequency", CHART_COLORS[0]))
    with col2:
        st.markdown("#### Top 10 Brands by Relative Pixel Area")
        st.plotly_chart(build_brand_bar(data.top_brands_by_coverage, "coverage_sum", "Relative Pixel Area",
                                        CHART_COLORS[1]))

    col3, col4 = st.columns(2)
    with col3:
        st.markdown("#### Ad Category by Frequency")
        st.plotly_chart(build_category_pie(data.categories_by_frequency, "frequency"))
    with col4:
        st.markdown("#### Ad Category by Relative Pixel Area")
        st.plotly_chart(build_category_pie(data.categories_by_coverage, "coverage_sum"))

    with st.expander("Aggregate tables"):
        st.dataframe(data.top_brands_by_frequency, hide_index=True)
        st.dataframe(data.categories_by_frequency, hide_index=True)
        col5, col6 = st.columns(2)
        with col5:
            st.download_button(
                "Download Top Brands CSV",
                data.top_brands_by_frequency.to_csv(index=False),
                file_name="top_brands.csv",
                mime="text/csv",
            )
        with col6:
            st.download_button(
                "Download Category Totals CSV",
                data.categories_by_frequency.to_csv(index=False),
                file_name="category_totals.csv",
                mime="text/csv",
            )


# -----------------------
# Tab: Best Frame Finder
# -----------------------
def _pick_brand(brand: str):
    st.session_state.brand_input = brand


def _request_best_frame():
    brand = (st.session_state.get("brand_input") or "").strip()
    if not brand or st.session_state.get("frame_pending"):
        return
    st.session_state.frame_brand = brand
    st.session_state.frame_result = None
    st.session_state.frame_error = None
    st.session_state.frame_pending = True


def _run_best_frame(session: SessionContext):
    brand = st.session_state.frame_brand
    result = find_best_frame(session.csv_text, brand, session.credential)
    if result is None:
        st.session_state.frame_error = (
            "Failed to find the best frame. The model may have returned an unexpected format "
            "or could not find the brand. Please try again."
        )
    else:
        st.session_state.frame_result = (brand, result)
    st.session_state.frame_pending = False


def render_best_frame(session: SessionContext):
    if not session.has_credential:
        _empty_state("API Key Required", "Please enter your API key in the sidebar.")
        return
    if not session.has_csv:
        _empty_state("No CSV File Loaded", "Please upload a CSV file in the sidebar to use this tool.")
        return

    st.markdown("## Best Frame Finder")
    st.write("Enter a brand name, and the AI analyst will find the single most valuable frame "
             "for that brand's exposure from your CSV data.")
    _active_file(session)

    candidates = load_candidates(session.csv_text)
    pending = st.session_state.get("frame_pending", False)
    if candidates:
        st.caption(f"Top {len(candidates)} Brands in this file:")
        cols = st.columns(5)
        for i, brand in enumerate(candidates):
            cols[i % 5].button(brand, key=f"brand_pick_{i}", on_click=_pick_brand, args=(brand,),
                                disabled=pending, width="stretch")

    st.text_input("Brand name", key="brand_input", placeholder="Enter brand name (e.g., 'Pepsi')", disabled=pending)
    st.button("Find Best Frame", key="find_best_frame", type="primary", on_click=_request_best_frame,
              disabled=pending, width="stretch")
    if pending:
        with st.spinner("AI Analyst is scanning the data..."):
            _run_best_frame(session)
        st.rerun()

    if st.session_state.get("frame_error"):
        st.error(st.session_state.frame_error)

    found = st.session_state.get("frame_result")
    if not found:
        if not st.session_state.get("frame_error"):
            st.caption("Enter a brand or select one from the list to begin.")
        return

    brand, result = found
    st.markdown("### Analyst Recommendation")
    col1, col2 = st.columns([1, 2])
    with col1:
        st.metric("Most Impactful Frame", result.frame_number)
    with col2:
        st.markdown("**Analyst's Reasoning:**")
        st.write(result.reasoning)

    try:
        dataset = load_dataset(session.csv_text)
    except CsvFormatError:
        return
    known_frames = frames_for_brand(dataset, brand)
    if known_frames and result.frame_number not in known_frames:
        st.warning(f"Frame {result.frame_number} is not one of the {len(known_frames)} frames listed for {brand}.")
    shortlist = rank_frames(dataset, brand)
    if not shortlist.empty:
        st.markdown("#### Rule-based shortlist")
        st.caption("Ranked by c_li, then placement, then on-field action.")
        st.dataframe(shortlist, hide_index=True)


TAB_HANDLERS: Dict[Tab, Callable[[SessionContext], None]] = {
    Tab.ANALYTICS: render_analytics,
    Tab.CHAT: render_chat,
    Tab.DASHBOARD: render_dashboard,
    Tab.BEST_FRAME: render_best_frame,
}


def main():
    st.set_page_config(page_title="Brand Analytics Suite", layout="wide")
    st.title("Brand Analytics Suite")

    session = _session()
    render_sidebar(session)

    active = st.radio(
        "Section",
        list(Tab),
        format_func=lambda tab: tab.value,
        horizontal=True,
        label_visibility="collapsed",
        key="active_tab",
    )
    TAB_HANDLERS[active](session)


main()
