"""Application settings.

Reads configuration from environment variables, after loading an optional
.env file at the repository root:
- RECONCILE_MAX_FILE_BYTES: Upload size cap (default 10 MB)
- RECONCILE_MAX_ROWS: CSV row cap (default 10000)
- RECONCILE_MAX_NAME_LENGTH: Longer payer names are dropped (default 200)
- RECONCILE_SAMPLE_ROWS: Rows sent to column inference (default 5)
- RECONCILE_DB_PATH: SQLite invoice database
- RECONCILE_AGENCIES: JSON list of {"label", "match_token", "expected_amount"}
- OPENAI_API_KEY / OPENAI_MODEL / OPENAI_TIMEOUT: Text collaborators
  (column inference and transliteration are disabled without a key)
- LOG_LEVEL / LOG_JSON: Logging output
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from remittance.collaborators import OpenAITextClient
from remittance.models import AgencyException, DEFAULT_AGENCIES, MatchingConfig
from remittance.pipeline import PipelineOptions

REPO_ROOT = Path(__file__).resolve().parents[1]

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)


class Settings(BaseModel):
    """Runtime configuration for the reconciliation service."""
    max_file_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    max_rows: int = Field(default=10_000, gt=0)
    max_name_length: int = Field(default=200, gt=0)
    sample_rows: int = Field(default=5, gt=0)
    db_path: Path = Field(default=REPO_ROOT / "reconcile.db")
    agencies: List[AgencyException] = Field(default_factory=lambda: list(DEFAULT_AGENCIES))

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout: float = 30.0

    log_level: str = "INFO"
    log_json: bool = False

    @property
    def collaborators_enabled(self) -> bool:
        return bool(self.openai_api_key)

    def text_client(self) -> Optional[OpenAITextClient]:
        """OpenAI text client for the collaborators, or None without an API key.

        Build one per process and close it on shutdown.
        """
        if not self.collaborators_enabled:
            return None
        return OpenAITextClient(
            api_key=self.openai_api_key,
            model=self.openai_model,
            timeout=self.openai_timeout,
        )

    def pipeline_options(self) -> PipelineOptions:
        """Per-run limits, agency table and matching configuration."""
        return PipelineOptions(
            max_file_bytes=self.max_file_bytes,
            max_rows=self.max_rows,
            sample_rows=self.sample_rows,
            agencies=list(self.agencies),
            matching=MatchingConfig(max_name_length=self.max_name_length),
        )

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, keeping defaults for unset ones."""
        values = {}
        env_map = {
            "max_file_bytes": "RECONCILE_MAX_FILE_BYTES",
            "max_rows": "RECONCILE_MAX_ROWS",
            "max_name_length": "RECONCILE_MAX_NAME_LENGTH",
            "sample_rows": "RECONCILE_SAMPLE_ROWS",
            "db_path": "RECONCILE_DB_PATH",
            "openai_api_key": "OPENAI_API_KEY",
            "openai_model": "OPENAI_MODEL",
            "openai_timeout": "OPENAI_TIMEOUT",
            "log_level": "LOG_LEVEL",
        }
        for field_name, env_name in env_map.items():
            value = os.getenv(env_name)
            if value:
                values[field_name] = value

        agencies = os.getenv("RECONCILE_AGENCIES")
        if agencies:
            values["agencies"] = json.loads(agencies)

        log_json = os.getenv("LOG_JSON")
        if log_json:
            values["log_json"] = log_json.strip().lower() in ("1", "true", "yes")

        return cls.model_validate(values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings.from_env()
