from __future__ import annotations

import os
from pathlib import Path
from typing import List


class Settings:
    """Centralized configuration for the protocol engine backend."""

    def __init__(self) -> None:
        base_dir = Path(__file__).resolve().parent
        repo_root = base_dir.parent
        data_root_default = repo_root / "data"

        self.data_root: Path = Path(
            os.environ.get("FITMEAL_DATA_ROOT") or data_root_default
        ).expanduser()
        self.app_db_path: Path = Path(
            os.environ.get("FITMEAL_DB_PATH") or (self.data_root / "fitmeal.db")
        ).expanduser()
        self.conditions_path: Path = Path(
            os.environ.get("FITMEAL_CONDITIONS_FILE")
            or (base_dir / "protocols" / "data" / "conditions.json")
        ).expanduser()

        # ---- Generation capability (OpenAI-compatible chat completions) ----
        self.ai_api_key: str | None = os.environ.get("FITMEAL_AI_API_KEY")
        self.ai_base_url: str = os.environ.get(
            "FITMEAL_AI_BASE_URL", "https://api.openai.com/v1"
        )
        self.ai_model: str = os.environ.get("FITMEAL_AI_MODEL", "gpt-4o")
        self.ai_timeout: float = float(os.environ.get("FITMEAL_AI_TIMEOUT", "45"))
        self.ai_max_tokens: int = int(os.environ.get("FITMEAL_AI_MAX_TOKENS", "8000"))
        self.ai_temperature: float = float(os.environ.get("FITMEAL_AI_TEMPERATURE", "0.4"))

        # Retry budget for one generation request; the timeout spans all attempts.
        self.retry_attempts: int = int(os.environ.get("FITMEAL_RETRY_ATTEMPTS") or "3")
        self.retry_backoff: float = float(os.environ.get("FITMEAL_RETRY_BACKOFF") or "1.0")
        self.generation_timeout: float = float(
            os.environ.get("FITMEAL_GENERATION_TIMEOUT") or "120"
        )

        self.log_level: str = (os.environ.get("FITMEAL_LOG_LEVEL") or "INFO").upper()

        cors = os.environ.get("FITMEAL_CORS_ORIGINS", "*")
        if cors.strip() == "*":
            self.cors_origins: List[str] = ["*"]
        else:
            self.cors_origins = [
                origin.strip() for origin in cors.split(",") if origin.strip()
            ]


settings = Settings()
