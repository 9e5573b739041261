import datetime as dt
import os
from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

ENV_PREFIX = "NEUROBOOKING_"

DEFAULT_TIMEZONE = "UTC"
DEFAULT_STORAGE_TIMEOUT = 5.0  # seconds
DEFAULT_LOG_LEVEL = "INFO"


class Settings(BaseModel):
    timezone: str = DEFAULT_TIMEZONE
    storage_timeout: float = Field(default=DEFAULT_STORAGE_TIMEOUT, gt=0)
    log_level: str = DEFAULT_LOG_LEVEL
    log_path: Path | None = None

    @property
    def tzinfo(self) -> dt.tzinfo:
        if self.timezone.upper() == "UTC":
            return dt.UTC
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """
        Build settings from NEUROBOOKING_* environment variables,
        falling back to the defaults above for anything unset.
        """
        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for field in cls.model_fields:
            raw = env.get(f"{ENV_PREFIX}{field.upper()}")
            if raw:
                values[field] = raw
        return cls.model_validate(values)
