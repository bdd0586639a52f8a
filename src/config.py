from __future__ import annotations

import os
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from utils import mask_secret


class Configuration(BaseModel):
    # Gemini
    gemini_api_key: Optional[str] = Field(default=None)
    gemini_model: str = Field(default="gemini-2.5-flash")
    gemini_temperature: float = Field(default=0.2)

    # Google Places (verification)
    places_api_key: Optional[str] = Field(default=None)
    places_base_url: str = Field(default="https://places.googleapis.com")
    places_timeout: int = Field(default=10)
    places_retries: int = Field(default=2)

    # Firebase
    firebase_credentials: Optional[str] = Field(default=None)
    firebase_project_id: Optional[str] = Field(default=None)
    user_collection: str = Field(default="userCollection")

    # Search defaults
    history_exclusion_cap: int = Field(default=50)
    fallback_lat: float = Field(default=25.0330)
    fallback_lng: float = Field(default=121.5654)

    # Server
    port: int = Field(default=5000)
    local_dev: bool = Field(default=False)

    @classmethod
    def from_env(cls, overrides: Optional[dict[str, Any]] = None) -> "Configuration":
        load_dotenv()
        raw: dict[str, Any] = {}

        env_map = {
            "gemini_api_key": os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_GENAI_API_KEY"),
            "gemini_model": os.getenv("GEMINI_MODEL"),
            "gemini_temperature": os.getenv("GEMINI_TEMPERATURE"),
            "places_api_key": os.getenv("GOOGLE_MAPS_API_KEY"),
            "places_base_url": os.getenv("PLACES_BASE_URL"),
            "places_timeout": os.getenv("PLACES_TIMEOUT"),
            "places_retries": os.getenv("PLACES_RETRIES"),
            "firebase_credentials": os.getenv("FIREBASE_CREDENTIALS"),
            "firebase_project_id": os.getenv("FIREBASE_PROJECT_ID"),
            "user_collection": os.getenv("USER_COLLECTION"),
            "history_exclusion_cap": os.getenv("HISTORY_EXCLUSION_CAP"),
            "port": os.getenv("PORT"),
            "local_dev": os.getenv("LOCAL_DEV"),
        }

        bool_fields = {"local_dev"}

        for k, v in env_map.items():
            if v is None:
                continue
            if k in bool_fields:
                raw[k] = str(v).lower() in {"1", "true", "yes", "on"}
            else:
                raw[k] = v

        if overrides:
            raw.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**raw)

    def require_gemini(self) -> None:
        if not self.gemini_api_key:
            raise ValueError("Gemini API Key is not configured (GEMINI_API_KEY)")

    @property
    def verification_enabled(self) -> bool:
        return bool(self.places_api_key)

    def log_summary(self) -> str:
        return (
            "gemini_model=%s gemini_key=%s places=%s places_key=%s firebase_project=%s local_dev=%s port=%s"
            % (
                self.gemini_model,
                mask_secret(self.gemini_api_key),
                self.verification_enabled,
                mask_secret(self.places_api_key),
                self.firebase_project_id or "default",
                self.local_dev,
                self.port,
            )
        )
