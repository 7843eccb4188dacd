import random

import pytest

from brand_exposure import (
    CANDIDATE_LIMIT,
    EmptyOrHeaderOnly,
    MissingColumns,
    aggregate_by,
    build_dashboard,
    frames_for_brand,
    parse_brand_csv,
    parse_float_prefix,
    rank,
    rank_frames,
    resolve_columns,
    split_csv_line,
    top_brand_candidates,
)

HEADER = "brand_name,c_li,ad_category"


def _csv(*rows, header=HEADER):
    return "\n".join([header, *rows])


def _as_dict(frame, key):
    return {row[key]: (row["frequency"], row["coverage_sum"]) for _, row in frame.iterrows()}


# --- Parsing ---

def test_split_keeps_commas_inside_quotes():
    assert split_csv_line('a,"b,c",d') == ["a", '"b,c"', "d"]
    assert split_csv_line("a,b,,d") == ["a", "b", "", "d"]


def test_parse_float_prefix_behaves_like_parse_float():
    assert parse_float_prefix("0.5abc") == 0.5
    assert parse_float_prefix(".25") == 0.25
    assert parse_float_prefix("-1e-3") == -0.001
    assert parse_float_prefix("abc") is None
    assert parse_float_prefix("") is None


def test_pepsi_example_aggregates():
    dataset = parse_brand_csv(_csv("Pepsi,0.10,Jersey", "Pepsi,0.20,Boundary"))
    brands = aggregate_by(dataset, "brand")
    assert len(brands) == 1
    row = brands.iloc[0]
    assert row["brand"] == "Pepsi"
    assert row["frequency"] == 2
    assert row["coverage_sum"] == pytest.approx(0.30)


def test_columns_resolve_in_any_order():
    text = _csv("Jersey,Pepsi,0.1", "Helmet,Dream11,0.5", "Signage,Pepsi,0.2",
                header="ad_category,brand_name,c_li")
    brands = _as_dict(aggregate_by(parse_brand_csv(text), "brand"), "brand")
    assert brands["Pepsi"][0] == 2
    assert brands["Dream11"][0] == 1
    assert brands["Dream11"][1] == pytest.approx(0.5)


def test_header_matching_ignores_case_and_quotes():
    dataset = parse_brand_csv(_csv("Pepsi,0.1,Jersey", header='"Brand_Name","C_LI","Ad_Categories"'))
    assert dataset.records[0].brand == "Pepsi"
    assert dataset.records[0].category == "Jersey"


def test_first_alias_wins():
    columns = resolve_columns(["brand_name", "c_li", "ad_categories", "ad_category"])
    assert columns["category"] == 3


def test_quoted_cells_are_unwrapped():
    text = _csv('"Coca, Cola",0.1,Jersey,"Kohli hits a four, crowd cheers"',
                header="brand_name,c_li,ad_category,General Description")
    record = parse_brand_csv(text).records[0]
    assert record.brand == "Coca, Cola"
    assert record.description == "Kohli hits a four, crowd cheers"


def test_crlf_line_endings():
    dataset = parse_brand_csv("brand_name,c_li,ad_category\r\nPepsi,0.1,Jersey\r\nDream11,0.2,Helmet\r\n")
    assert [r.category for r in dataset.records] == ["Jersey", "Helmet"]


def test_bad_rows_are_skipped_without_stopping_the_parse():
    dataset = parse_brand_csv(_csv(
        "Pepsi,abc,Jersey",
        ",0.1,Jersey",
        "Pepsi,0.1,",
        "Pepsi,0.2",
        "Dream11,0.4,Helmet",
        "Pepsi,0.3,Jersey",
    ))
    assert [r.brand for r in dataset.records] == ["Dream11", "Pepsi"]
    assert dataset.skipped_rows == 4
    brands = _as_dict(aggregate_by(dataset, "brand"), "brand")
    assert brands["Pepsi"] == (1, pytest.approx(0.3))


def test_optional_columns_are_read():
    text = _csv("12,Pepsi,0.4,Jersey,Front chest,Wicket taken", ",Pepsi,0.1,Jersey,,",
                header="frame_no,brand_name,c_li,ad_category,Ad_details,General Description")
    first, second = parse_brand_csv(text).records
    assert first.frame_number == 12
    assert first.detail == "Front chest"
    assert first.description == "Wicket taken"
    assert second.frame_number is None
    assert second.detail is None


def test_non_finite_frame_number_is_dropped_not_fatal():
    dataset = parse_brand_csv("frame_no,brand_name,c_li,ad_category\n1e400,Pepsi,0.1,Jersey\n2,Pepsi,0.2,Jersey")
    assert [r.frame_number for r in dataset.records] == [None, 2]
    assert dataset.skipped_rows == 0


def test_missing_coverage_column_is_named():
    with pytest.raises(MissingColumns) as excinfo:
        parse_brand_csv("brand_name,ad_category\nPepsi,Jersey")
    assert excinfo.value.missing == ["c_li"]
    assert "'c_li'" in str(excinfo.value)


def test_all_missing_columns_are_listed():
    with pytest.raises(MissingColumns) as excinfo:
        parse_brand_csv("frame_no,score\n1,2")
    assert excinfo.value.missing == ["brand_name", "c_li", "ad_category/ad_categories"]


@pytest.mark.parametrize("text", ["", "   ", "brand_name,c_li,ad_category\n"])
def test_empty_or_header_only(text):
    with pytest.raises(EmptyOrHeaderOnly):
        parse_brand_csv(text)


# --- Aggregation ---

def test_frequency_matches_trimmed_brand_counts():
    rows = [" Pepsi ,0.1,Jersey", "Pepsi,0.2,Jersey", "pepsi,0.3,Jersey", "Dream11 ,0.1,Helmet"]
    brands = _as_dict(aggregate_by(parse_brand_csv(_csv(*rows)), "brand"), "brand")
    assert brands["Pepsi"][0] == 2
    assert brands["pepsi"][0] == 1
    assert brands["Dream11"][0] == 1


def test_coverage_sums_do_not_depend_on_row_order():
    rng = random.Random(7)
    brands = ["Pepsi", "Dream11", "MRF", "Nissan", "Oppo"]
    rows = [f"{rng.choice(brands)},{rng.random():.4f},{rng.choice(['Jersey', 'Helmet'])}" for _ in range(200)]
    shuffled = rows[:]
    rng.shuffle(shuffled)

    original = _as_dict(aggregate_by(parse_brand_csv(_csv(*rows)), "brand"), "brand")
    permuted = _as_dict(aggregate_by(parse_brand_csv(_csv(*shuffled)), "brand"), "brand")
    assert original.keys() == permuted.keys()
    for brand, (count, total) in original.items():
        assert permuted[brand][0] == count
        assert permuted[brand][1] == pytest.approx(total)


def test_top_brands_capped_at_ten_categories_unbounded():
    rows = [f"Brand{i},0.01,Category{i % 30}" for i in range(1200)]
    data = build_dashboard(parse_brand_csv(_csv(*rows)))
    assert len(data.top_brands_by_frequency) == 10
    assert len(data.top_brands_by_coverage) == 10
    assert len(data.categories_by_frequency) == 30
    assert len(data.categories_by_coverage) == 30


def test_rankings_are_descending_with_stable_ties():
    dataset = parse_brand_csv(_csv(
        "Alpha,0.1,Jersey",
        "Bravo,0.3,Helmet",
        "Charlie,0.1,Jersey",
        "Bravo,0.1,Signage",
        "Delta,0.25,Signage",
    ))
    data = build_dashboard(dataset)
    assert list(data.top_brands_by_frequency["brand"]) == ["Bravo", "Alpha", "Charlie", "Delta"]
    assert list(data.top_brands_by_coverage["brand"]) == ["Bravo", "Delta", "Alpha", "Charlie"]
    assert list(data.categories_by_frequency["category"]) == ["Jersey", "Signage", "Helmet"]
    assert data.categories_by_coverage.iloc[0]["category"] == "Signage"


def test_rank_limit():
    brands = aggregate_by(parse_brand_csv(_csv("A,1,x", "B,2,x", "C,3,x")), "brand")
    assert list(rank(brands, "coverage_sum", limit=2)["brand"]) == ["C", "B"]


def test_dataset_with_no_usable_rows_gives_empty_tables():
    data = build_dashboard(parse_brand_csv(_csv("Pepsi,n/a,Jersey")))
    assert data.top_brands_by_frequency.empty
    assert data.categories_by_coverage.empty


# --- Brand suggestions ---

def test_excluded_brands_never_suggested():
    text = _csv("ICC,0.1,x", "ICC,0.1,x", "ICC,0.1,x", "Pepsi,0.2,x", "Dream11,0.1,x", "Pepsi,0.1,x",
                "India,0.1,x", "World Cup,0.1,x")
    assert top_brand_candidates(text) == ["Pepsi", "Dream11"]


def test_suggestions_limited_and_sorted():
    rows = []
    for i in range(20):
        rows.extend([f"Brand{i:02d},0.1,x"] * (i + 1))
    candidates = top_brand_candidates(_csv(*rows))
    assert len(candidates) == CANDIDATE_LIMIT
    assert candidates[0] == "Brand19"
    assert candidates[-1] == "Brand05"


def test_suggestions_need_exact_brand_name_header():
    assert top_brand_candidates(_csv("Pepsi,0.1,x", header="Brand_Name,c_li,ad_category")) == []
    assert top_brand_candidates(HEADER) == []


# --- Frame shortlist ---

FRAMES_CSV = _csv(
    "1,Pepsi,0.2,Boundary Rope,Near long-on,Bowler walks back",
    "2,Pepsi,0.5,Jersey,Front chest,Batsman hits a six",
    "3,pepsi,0.5,Signage,Stand,Quiet moment",
    "4,Dream11,0.9,Jersey,Sleeve,Wicket celebration",
    "5,Pepsi,0.2,Boundary Rope,Near long-on,Wicket falls and celebration",
    ",Pepsi,0.9,Jersey,Front chest,Six",
    header="frame_no,brand_name,c_li,ad_category,Ad_details,General Description",
)


def test_rank_frames_orders_by_coverage_then_placement_then_action():
    shortlist = rank_frames(parse_brand_csv(FRAMES_CSV), " PEPSI ")
    assert list(shortlist["frame_number"]) == [2, 3, 5, 1]
    assert list(shortlist["placement_score"]) == [3, 1, 1, 1]
    assert shortlist.iloc[2]["action_score"] == 2


def test_rank_frames_limit_and_unknown_brand():
    dataset = parse_brand_csv(FRAMES_CSV)
    assert len(rank_frames(dataset, "Pepsi", limit=2)) == 2
    assert rank_frames(dataset, "Nissan").empty


def test_frames_for_brand():
    assert frames_for_brand(parse_brand_csv(FRAMES_CSV), "PEPSI") == [1, 2, 3, 5]
