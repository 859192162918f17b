"""
Importer configuration.

Values come from BIBLE_IMPORT_* environment variables (a .env file is read
first) and can be overridden by CLI flags.

    BIBLE_IMPORT_DATABASE_URL        sqlite:///bible.db
    BIBLE_IMPORT_TRANSLATIONS        KJV,ASV,WEB
    BIBLE_IMPORT_MAX_WORKERS         4
    BIBLE_IMPORT_MAX_RETRIES         3
    BIBLE_IMPORT_BATCH_SIZE_ROWS     500
    BIBLE_IMPORT_MAX_BATCH_UNITS     (unset = no limit)
    BIBLE_IMPORT_MAX_BATCH_SECONDS   (unset = no limit)
    BIBLE_IMPORT_REQUEST_TIMEOUT     15
    BIBLE_IMPORT_SOURCES             scrollmapper,bible-api,bolls
    BIBLE_IMPORT_KEYWORDS_FILE       (unset = bundled table)
    BIBLE_IMPORT_<SOURCE>_BASE_DELAY_MS / _CEILING_DELAY_MS
        e.g. BIBLE_IMPORT_BIBLE_API_BASE_DELAY_MS=2000
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .canon import DEFAULT_TRANSLATIONS, TRANSLATIONS
from .rate_limit import DEFAULT_CEILING_DELAY_MS, SourcePacing
from .sources import DEFAULT_SOURCE_ORDER, SOURCE_CLASSES

ENV_PREFIX = "BIBLE_IMPORT_"

# Known tolerance of each source
DEFAULT_PACING = {
    "scrollmapper": SourcePacing(base_delay_ms=50, ceiling_delay_ms=DEFAULT_CEILING_DELAY_MS),
    "bible-api": SourcePacing(base_delay_ms=2000, ceiling_delay_ms=DEFAULT_CEILING_DELAY_MS),
    "bolls": SourcePacing(base_delay_ms=250, ceiling_delay_ms=DEFAULT_CEILING_DELAY_MS),
}


class ConfigError(ValueError):
    """Invalid configuration value."""


@dataclass
class ImportConfig:
    database_url: str = "sqlite:///bible.db"
    translations: list[str] = field(default_factory=lambda: list(DEFAULT_TRANSLATIONS))
    max_workers: int = 4
    max_retries: int = 3
    batch_size_rows: int = 500
    max_batch_units: Optional[int] = None
    max_batch_seconds: Optional[float] = None
    request_timeout: float = 15.0
    source_order: list[str] = field(default_factory=lambda: list(DEFAULT_SOURCE_ORDER))
    pacing: dict[str, SourcePacing] = field(
        default_factory=lambda: {k: SourcePacing(v.base_delay_ms, v.ceiling_delay_ms) for k, v in DEFAULT_PACING.items()}
    )
    keywords_file: Optional[Path] = None

    def validate(self) -> "ImportConfig":
        unknown = [t for t in self.translations if t not in TRANSLATIONS]
        if unknown:
            raise ConfigError(f"Unknown translation codes: {', '.join(unknown)} (known: {', '.join(TRANSLATIONS)})")
        if not self.translations:
            raise ConfigError("At least one target translation is required")
        unknown = [s for s in self.source_order if s not in SOURCE_CLASSES]
        if unknown:
            raise ConfigError(f"Unknown sources: {', '.join(unknown)} (known: {', '.join(SOURCE_CLASSES)})")
        if self.max_batch_units is not None and self.max_batch_units < 0:
            raise ConfigError("max_batch_units must not be negative")
        if self.max_batch_seconds is not None and self.max_batch_seconds <= 0:
            raise ConfigError("max_batch_seconds must be positive")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be at least 1")
        if self.max_retries < 1:
            raise ConfigError("max_retries must be at least 1")
        if self.batch_size_rows < 1:
            raise ConfigError("batch_size_rows must be at least 1")
        for source_id, pacing in self.pacing.items():
            if pacing.base_delay_ms < 0 or pacing.ceiling_delay_ms < pacing.base_delay_ms:
                raise ConfigError(f"Invalid delays for {source_id}: {pacing}")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "ImportConfig":
        if dotenv and environ is None:
            load_dotenv()
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value.strip() if value and value.strip() else None

        config = cls()
        if get("DATABASE_URL"):
            config.database_url = get("DATABASE_URL")
        if get("TRANSLATIONS"):
            config.translations = parse_list(get("TRANSLATIONS"), upper=True)
        if get("SOURCES"):
            config.source_order = parse_list(get("SOURCES"))
        if get("KEYWORDS_FILE"):
            config.keywords_file = Path(get("KEYWORDS_FILE"))

        config.max_workers = _int(get("MAX_WORKERS"), config.max_workers, "MAX_WORKERS")
        config.max_retries = _int(get("MAX_RETRIES"), config.max_retries, "MAX_RETRIES")
        config.batch_size_rows = _int(get("BATCH_SIZE_ROWS"), config.batch_size_rows, "BATCH_SIZE_ROWS")
        config.max_batch_units = _int(get("MAX_BATCH_UNITS"), None, "MAX_BATCH_UNITS")
        config.max_batch_seconds = _float(get("MAX_BATCH_SECONDS"), None, "MAX_BATCH_SECONDS")
        config.request_timeout = _float(get("REQUEST_TIMEOUT"), config.request_timeout, "REQUEST_TIMEOUT")

        for source_id in SOURCE_CLASSES:
            key = source_id.upper().replace("-", "_")
            pacing = config.pacing.setdefault(source_id, SourcePacing())
            pacing.base_delay_ms = _int(get(f"{key}_BASE_DELAY_MS"), pacing.base_delay_ms, f"{key}_BASE_DELAY_MS")
            pacing.ceiling_delay_ms = _int(get(f"{key}_CEILING_DELAY_MS"), pacing.ceiling_delay_ms, f"{key}_CEILING_DELAY_MS")

        return config


def parse_list(value: str, upper: bool = False) -> list[str]:
    items = [item.strip() for item in value.split(",") if item.strip()]
    return [item.upper() for item in items] if upper else items


def _int(value: Optional[str], default, name: str):
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}")


def _float(value: Optional[str], default, name: str):
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name} must be a number, got {value!r}")
