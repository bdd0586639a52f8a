from __future__ import annotations

from typing import Any, Dict, Optional

from google import genai
from google.genai import types
from loguru import logger

from config import Configuration


class GenerationError(RuntimeError):
    pass


RESTAURANT_LIST_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "name": {"type": "STRING", "description": "Name of the restaurant"},
            "address": {"type": "STRING", "description": "Full address"},
            "rating": {"type": "NUMBER", "description": "Rating from 1.0 to 5.0"},
            "priceLevel": {"type": "STRING", "description": "One of: '$', '$$', '$$$', '$$$$', or '-'"},
            "tags": {
                "type": "ARRAY",
                "items": {"type": "STRING"},
                "description": "2-3 short tags describing the food",
            },
            "description": {"type": "STRING", "description": "Brief appetizing description in the target language"},
            "recommendedDishes": {
                "type": "ARRAY",
                "items": {"type": "STRING"},
                "description": "Top 3 popular dishes",
            },
            "isOpen": {"type": "BOOLEAN", "description": "Is likely open now?"},
            "lat": {"type": "NUMBER"},
            "lng": {"type": "NUMBER"},
        },
        "required": [
            "name",
            "address",
            "rating",
            "priceLevel",
            "tags",
            "description",
            "recommendedDishes",
            "lat",
            "lng",
        ],
    },
}


def normalize_model_id(model: Optional[str], default: str) -> str:
    model_id = (model or "").strip() or default
    if model_id.startswith("googleai/"):
        model_id = model_id[len("googleai/") :]
    return model_id


class GeminiGenerator:
    """Structured JSON generation through the google-genai SDK."""

    def __init__(self, cfg: Configuration, client: Optional[genai.Client] = None) -> None:
        self.cfg = cfg
        self._client = client

    def _ensure_client(self) -> genai.Client:
        if self._client is None:
            self.cfg.require_gemini()
            self._client = genai.Client(api_key=self.cfg.gemini_api_key)
        return self._client

    def generate_json(self, prompt: str, *, schema: Dict[str, Any], model: Optional[str] = None) -> str:
        client = self._ensure_client()
        model_id = normalize_model_id(model, self.cfg.gemini_model)
        logger.debug("gemini request model={} prompt_chars={}", model_id, len(prompt))
        try:
            response = client.models.generate_content(
                model=model_id,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=schema,
                    temperature=self.cfg.gemini_temperature,
                ),
            )
        except Exception as exc:
            raise GenerationError(str(exc)) from exc
        return response.text or ""
