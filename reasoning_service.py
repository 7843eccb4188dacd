import json
import logging
import os
from dataclasses import dataclass
from textwrap import dedent
from typing import Any, Dict, Optional

import requests
from dotenv import load_dotenv
from groq import Groq

logger = logging.getLogger(__name__)

# Load environment variables (.env file or host secrets)
load_dotenv()

# --- Provider configuration ---
DEFAULT_PROVIDER = os.getenv("REASONING_PROVIDER", "groq").strip().lower()
GROQ_CHAT_MODEL = os.getenv("GROQ_CHAT_MODEL", "llama-3.3-70b-versatile")
GROQ_FRAME_MODEL = os.getenv("GROQ_FRAME_MODEL", "moonshotai/kimi-k2-instruct")
OPENROUTER_CHAT_MODEL = os.getenv("OPENROUTER_CHAT_MODEL", "google/gemini-2.5-flash-lite")
OPENROUTER_FRAME_MODEL = os.getenv("OPENROUTER_FRAME_MODEL", "google/gemini-2.5-pro")
OPENROUTER_URL = os.getenv("OPENROUTER_URL", "https://openrouter.ai/api/v1/chat/completions")

API_KEY_ENV_VARS = {
    "groq": "GROQ_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

BEST_FRAME_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "frameNumber": {
            "type": "number",
            "description": "The single best frame number for the brand's exposure.",
        },
        "reasoning": {
            "type": "string",
            "description": "A detailed explanation of why this frame was chosen, referencing the specific criteria.",
        },
    },
    "required": ["frameNumber", "reasoning"],
    "additionalProperties": False,
}


class ReasoningServiceFailure(RuntimeError):
    """The hosted model returned nothing usable."""


class InvalidCredential(ValueError):
    """No API key was supplied, so no call is attempted."""


@dataclass(frozen=True)
class SelectionResult:
    frame_number: int
    reasoning: str


# -----------------------
# Service backends
# -----------------------
class ReasoningService:
    """The two calls the dashboard makes to a hosted model."""

    provider = "base"

    def generate_text(self, prompt: str) -> str:
        raise NotImplementedError

    def generate_json(self, prompt: str, schema: Dict[str, Any]) -> str:
        """Return the raw JSON text of an object shaped like ``schema``."""
        raise NotImplementedError


class GroqReasoningService(ReasoningService):
    provider = "groq"

    def __init__(self, api_key: str, chat_model: str = GROQ_CHAT_MODEL, frame_model: str = GROQ_FRAME_MODEL,
                 client: Optional[Groq] = None):
        self.chat_model = chat_model
        self.frame_model = frame_model
        self.client = client or Groq(api_key=api_key)

    def _complete(self, prompt: str, model: str, **kwargs) -> str:
        logger.info("Calling Groq model %s (%d prompt chars)", model, len(prompt))
        chat_completion = self.client.chat.completions.create(
            messages=[{"role": "user", "content": prompt}],
            model=model,
            **kwargs,
        )
        content = chat_completion.choices[0].message.content
        if not content:
            raise ReasoningServiceFailure(f"Groq model {model} returned an empty response")
        return content

    def generate_text(self, prompt: str) -> str:
        return self._complete(prompt, self.chat_model)

    def generate_json(self, prompt: str, schema: Dict[str, Any]) -> str:
        # json_object mode does not take a schema; the prompt spells the keys out
        schema_prompt = dedent(f"""
            {prompt}

            OUTPUT FORMAT:
            Your response MUST be a single, valid JSON object matching this JSON schema. Do not include any other text.
            {json.dumps(schema)}
        """)
        return self._complete(schema_prompt, self.frame_model, response_format={"type": "json_object"})


class OpenRouterReasoningService(ReasoningService):
    provider = "openrouter"

    def __init__(self, api_key: str, chat_model: str = OPENROUTER_CHAT_MODEL,
                 frame_model: str = OPENROUTER_FRAME_MODEL, url: str = OPENROUTER_URL):
        self.api_key = api_key
        self.chat_model = chat_model
        self.frame_model = frame_model
        self.url = url

    def _complete(self, prompt: str, model: str, **extra) -> str:
        logger.info("Calling OpenRouter model %s (%d prompt chars)", model, len(prompt))
        response = requests.post(
            url=self.url,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            json={
                "model": model,
                "messages": [{"role": "user", "content": prompt}],
                **extra,
            },
        )
        response.raise_for_status()
        result = response.json()
        try:
            content = result["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ReasoningServiceFailure(f"Unexpected OpenRouter response shape: {e}") from e
        if not content:
            raise ReasoningServiceFailure(f"OpenRouter model {model} returned an empty response")
        return content

    def generate_text(self, prompt: str) -> str:
        return self._complete(prompt, self.chat_model)

    def generate_json(self, prompt: str, schema: Dict[str, Any]) -> str:
        response_format = {
            "type": "json_schema",
            "json_schema": {"name": "best_frame", "strict": True, "schema": schema},
        }
        return self._complete(prompt, self.frame_model, response_format=response_format)


def default_credential(provider: Optional[str] = None) -> str:
    """API key from the environment for ``provider``, or an empty string."""
    env_var = API_KEY_ENV_VARS.get((provider or DEFAULT_PROVIDER).lower())
    return os.getenv(env_var, "") if env_var else ""


def build_reasoning_service(credential: Optional[str], provider: Optional[str] = None) -> ReasoningService:
    if not credential or not credential.strip():
        raise InvalidCredential("API key is not provided")
    provider = (provider or DEFAULT_PROVIDER).lower()
    if provider == "groq":
        return GroqReasoningService(credential.strip())
    if provider == "openrouter":
        return OpenRouterReasoningService(credential.strip())
    raise ValueError(f"Unknown reasoning provider: {provider!r}")


def _resolve_service(credential: Optional[str], service: Optional[ReasoningService]) -> ReasoningService:
    # The credential gate applies even when a service is injected
    if not credential or not credential.strip():
        logger.warning("Reasoning call skipped: no API key")
        raise InvalidCredential("API key is not provided")
    return service if service is not None else build_reasoning_service(credential)


# -----------------------
# CSV chatbot
# -----------------------
def build_chat_prompt(csv_text: str, user_query: str) -> str:
    return dedent(f"""
        You are an expert data analyst. Your task is to answer a question based on the provided CSV data.
        Carefully analyze the data to find the answer.

        IMPORTANT GUIDELINES FOR ANALYSIS:
        - Exclude the following entities from your analysis and final answer:
          - Cricket organizations (e.g., ICC, BCCI).
          - Non-sponsoring product names and taglines (e.g., 5G).
          - Country names (e.g., INDIA, AUSTRALIA).
          - Tournament names (e.g., WORLD CUP, ASIA CUP).
          - Player names (e.g., VIRAT, BABAR).
        - Your focus should be on commercial brands and sponsors present in the data.

        Your response must be only the final answer to the user's question, without any of your reasoning,
        steps, or analysis process. Be direct and concise.

        Here is the CSV data (the first row is the header):
        ---
        {csv_text}
        ---

        Here is the user's question:
        ---
        "{user_query}"
        ---

        Final Answer:
    """)


def get_chatbot_response(csv_text: str, user_query: str, credential: Optional[str],
                         service: Optional[ReasoningService] = None) -> str:
    """Answer a free-form question about the CSV. Never raises; failures become a reply."""
    try:
        svc = _resolve_service(credential, service)
        return svc.generate_text(build_chat_prompt(csv_text, user_query))
    except Exception as e:
        logger.exception("Error getting chatbot response")
        return f"Sorry, I encountered an error: {e}. Please check your API key and the data format."


# -----------------------
# Best frame finder
# -----------------------
def build_best_frame_prompt(csv_text: str, brand_name: str) -> str:
    return dedent(f"""
        You are an expert sports marketing analyst. Your task is to find the single best frame from the provided
        CSV data that represents the most valuable brand exposure for a specific brand.

        Analyze the data based on these four criteria in order of importance:
        1. 'c_li' (Relative Coverage): This measures the relative area of the logo compared to the total frame area.
           Higher values are better. This is the most important factor.
        2. 'ad_categories' (Ad Location): This describes where the logo appears (e.g., "Jersey", "Boundary Rope",
           "On-screen graphics"). Prime locations like jerseys or prominent on-screen graphics are more valuable.
        3. 'Ad_details' (Ad Context): This provides more specific details about the ad's location.
        4. 'General Description' (Action Context): This describes the action happening in the frame. Frames with
           exciting action (e.g., "a boundary is hit", "a wicket is taken", "player celebration") are more valuable
           than neutral moments.

        Your Goal:
        Identify the single frame_no that provides the optimal combination of these factors for the brand: "{brand_name}".

        CSV Data:
        ---
        {csv_text}
        ---

        Analyze the entire dataset for instances of "{brand_name}" and select the single best frame. Provide the frame
        number and a detailed justification for your choice, explaining how it excels across the given criteria.
    """)


def parse_selection_result(raw: str) -> Optional[SelectionResult]:
    """Validate the model's JSON reply. Anything short of both fields is a failure."""
    try:
        payload = json.loads(raw)
    except (ValueError, TypeError):
        logger.warning("Best frame reply was not valid JSON")
        return None
    if not isinstance(payload, dict):
        logger.warning("Best frame reply was not a JSON object")
        return None

    frame = payload.get("frameNumber")
    reasoning = payload.get("reasoning")
    if isinstance(frame, bool) or not isinstance(frame, (int, float)) or frame != frame:
        logger.warning("Best frame reply has no numeric frameNumber: %r", frame)
        return None
    if isinstance(frame, float) and not frame.is_integer():
        logger.warning("Best frame reply has a fractional frameNumber: %r", frame)
        return None
    if not isinstance(reasoning, str) or not reasoning.strip():
        logger.warning("Best frame reply has no reasoning")
        return None
    return SelectionResult(frame_number=int(frame), reasoning=reasoning.strip())


def find_best_frame(csv_text: str, brand_name: str, credential: Optional[str],
                    service: Optional[ReasoningService] = None) -> Optional[SelectionResult]:
    """Ask the model for the single most valuable frame for ``brand_name``.

    Returns None on any failure: missing key, transport error, or a reply that
    does not match BEST_FRAME_SCHEMA.
    """
    try:
        svc = _resolve_service(credential, service)
        raw = svc.generate_json(build_best_frame_prompt(csv_text, brand_name), BEST_FRAME_SCHEMA)
    except Exception:
        logger.exception("Error finding best frame for %s", brand_name)
        return None
    return parse_selection_result(raw)
