from __future__ import annotations

from typing import Dict, Optional

import google.generativeai as genai
from google.generativeai import types as genai_types

from .config import Settings

DEFAULT_SAFETY_SETTINGS = [
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
]


class GeminiClient:
    """Thin wrapper around the Gemini SDK with model caching and a request timeout."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Configure the Gemini SDK and initialize the model cache.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Configures the SDK global API key and caches a model.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: Raises ValueError if the API key is missing.
        If Removed: Query expansion and answer composition cannot call the LLM.
        Testing Notes: Validate a missing key raises ValueError.
        """
        # Configure the SDK once and warm the default model.
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        genai.configure(api_key=settings.gemini_api_key)
        self._timeout = settings.ai_timeout
        self._models: Dict[str, genai.GenerativeModel] = {}
        self._default_model = _normalize_model_name(settings.gemini_model)
        if self._default_model:
            self._models[self._default_model] = genai.GenerativeModel(self._default_model)

    def generate_text(
        self,
        prompt: str,
        model: Optional[str] = None,
        temperature: float = 0.2,
        max_output_tokens: int = 512,
    ) -> str:
        """Purpose: Generate a single text response from a string prompt.
        Inputs/Outputs: Input is prompt string and optional model/config; returns text.
        Side Effects / State: May add a model to the internal cache.
        Dependencies: Uses genai.GenerativeModel.generate_content.
        Failure Modes: Raises ValueError if model name is missing; SDK and timeout
            errors propagate to the caller.
        If Removed: The AI assistant cannot reach the LLM.
        Testing Notes: Ensure non-empty output for valid prompt and model.
        """
        # Resolve the model, then generate with the shared safety settings.
        model_name = _normalize_model_name(model) if model else self._default_model
        if not model_name:
            raise ValueError("Gemini model name is required")
        if model_name not in self._models:
            self._models[model_name] = genai.GenerativeModel(model_name)
        response = self._models[model_name].generate_content(
            prompt,
            generation_config={
                "temperature": temperature,
                "max_output_tokens": max_output_tokens,
            },
            safety_settings=DEFAULT_SAFETY_SETTINGS,
            request_options={"timeout": self._timeout},
        )
        text: Optional[str] = getattr(response, "text", None)
        return (text or "").strip()


def _normalize_model_name(name: Optional[str]) -> str:
    # Strip "models/" prefix and whitespace.
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
