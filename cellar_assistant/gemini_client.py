from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import google.generativeai as genai

from .config import Settings
from .prompt_builder import CompletionRequest

logger = logging.getLogger("cellar.gemini")

DEFAULT_SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]


class GeminiClient:
    """Thin wrapper around Gemini SDK with model caching and safety settings."""

    def __init__(self, settings: Settings, max_output_tokens: int = 4096) -> None:
        """Purpose: Configure the Gemini SDK and initialize the model cache.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Configures the SDK global API key when one is set.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: None at init. A missing key surfaces on the first call so the
            app can still start and report the failure per request.
        If Removed: The assistant cannot reach the completion API.
        Testing Notes: Calling complete() without a key raises ValueError.
        """
        self._settings = settings
        self._max_output_tokens = max_output_tokens
        self._models: Dict[Tuple[str, str], genai.GenerativeModel] = {}
        self._default_model = _normalize_model_name(settings.gemini_model)
        if settings.gemini_api_key:
            genai.configure(api_key=settings.gemini_api_key)

    def complete(self, request: CompletionRequest) -> str:
        """Execute one assembled CompletionRequest and return the reply text."""
        return self.generate_content(
            request.contents,
            model=request.model,
            system_instruction=request.system_instruction,
            temperature=request.temperature,
        )

    def generate_content(
        self,
        contents: list,
        model: Optional[str] = None,
        system_instruction: Optional[str] = None,
        temperature: float = 0.1,
    ) -> str:
        """Purpose: Generate a response from structured chat contents.
        Inputs/Outputs: Input is list of content entries and optional system prompt; returns text.
        Side Effects / State: May add a model to the internal cache.
        Dependencies: Uses genai.GenerativeModel.generate_content and _flatten_contents fallback.
        Failure Modes: Raises ValueError if the API key or model name is missing; falls
            back to a flattened prompt on TypeError; SDK errors propagate.
        If Removed: Multi-turn generation stops working.
        Testing Notes: Test both structured contents and fallback path for older SDKs.
        """
        if not self._settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        model_name = _normalize_model_name(model) if model else self._default_model
        if not model_name:
            raise ValueError("Gemini model name is required")

        generation_config = {
            "temperature": temperature,
            "max_output_tokens": self._max_output_tokens,
        }
        logger.debug("generate model=%s turns=%s", model_name, len(contents))
        try:
            generative_model = self._get_model(model_name, system_instruction or "")
            response = generative_model.generate_content(
                contents,
                generation_config=generation_config,
                safety_settings=DEFAULT_SAFETY_SETTINGS,
            )
        except TypeError:
            logger.info("model=%s rejected structured call; retrying as flat prompt", model_name)
            if system_instruction:
                combined = f"{system_instruction}\n\n" + _flatten_contents(contents)
            else:
                combined = _flatten_contents(contents)
            response = genai.GenerativeModel(model_name).generate_content(
                combined,
                generation_config=generation_config,
                safety_settings=DEFAULT_SAFETY_SETTINGS,
            )

        return _response_text(response)

    def _get_model(self, model_name: str, system_instruction: str) -> genai.GenerativeModel:
        # The system instruction is bound at construction, so it is part of the cache key.
        key = (model_name, system_instruction)
        if key not in self._models:
            if len(self._models) >= 32:
                self._models.clear()
            if system_instruction:
                self._models[key] = genai.GenerativeModel(model_name, system_instruction=system_instruction)
            else:
                self._models[key] = genai.GenerativeModel(model_name)
        return self._models[key]


def _response_text(response: object) -> str:
    # response.text raises ValueError when the candidate has no text part (e.g. blocked).
    try:
        text: Optional[str] = getattr(response, "text", None)
    except ValueError:
        logger.warning("gemini response carried no text part")
        return ""
    return (text or "").strip()


def _normalize_model_name(name: Optional[str]) -> str:
    """Purpose: Normalize model names by stripping prefix and whitespace.
    Inputs/Outputs: Input is a model name string; output is normalized name.
    Side Effects / State: None.
    Dependencies: None; used by GeminiClient.
    Failure Modes: Returns empty string for falsy input.
    If Removed: Model caching and selection may use invalid names and fail.
    Testing Notes: Ensure "models/foo" becomes "foo" and whitespace is trimmed.
    """
    # Strip "models/" prefix and whitespace.
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned


def _flatten_contents(contents: list) -> str:
    """Convert role-tagged contents into a single plain-text prompt."""
    parts: list[str] = []
    for entry in contents:
        if not isinstance(entry, dict):
            continue
        role = entry.get("role", "")
        texts = [
            str(segment["text"])
            for segment in entry.get("parts", []) or []
            if isinstance(segment, dict) and segment.get("text")
        ]
        if texts:
            prefix = f"{role.upper()}: " if role else ""
            parts.append(prefix + "\n".join(texts))
    return "\n\n".join(parts)
