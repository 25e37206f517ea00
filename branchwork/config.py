"""Settings read from the environment (and an optional .env file).

  BRANCHWORK_ADVENTURES_DIR   user adventure documents (default ./adventures)
  BRANCHWORK_CACHE_SIZE       condition cache high-water mark (default 1000)
  BRANCHWORK_HISTORY_LIMIT    stat audit history length (default 500)
  BRANCHWORK_VALIDATOR_URL    remote validation service; empty = local rules
  BRANCHWORK_VALIDATOR_KEY    bearer token for the remote service
  BRANCHWORK_VALIDATION       "off" to skip validation entirely
  LOG_LEVEL, HOST, PORT
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from branchwork.validation import (
    DocumentValidator,
    HttpValidator,
    PermissiveValidator,
    Validator,
)

logger = logging.getLogger(__name__)

ROOT = Path(__file__).parent.parent

DEFAULT_CACHE_SIZE = 1000
DEFAULT_HISTORY_LIMIT = 500


@dataclass(frozen=True)
class Settings:
    adventures_dir: Path = Path("adventures")
    cache_size: int = DEFAULT_CACHE_SIZE
    history_limit: int = DEFAULT_HISTORY_LIMIT
    validator_url: str = ""
    validator_key: str = ""
    validation: bool = True
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 13013


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", name, raw)
        return default


def load_settings(env_file: Path | None = None) -> Settings:
    load_dotenv(env_file or ROOT / ".env")
    return Settings(
        adventures_dir=Path(os.getenv("BRANCHWORK_ADVENTURES_DIR", "adventures")),
        cache_size=_int_env("BRANCHWORK_CACHE_SIZE", DEFAULT_CACHE_SIZE),
        history_limit=_int_env("BRANCHWORK_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT),
        validator_url=os.getenv("BRANCHWORK_VALIDATOR_URL", ""),
        validator_key=os.getenv("BRANCHWORK_VALIDATOR_KEY", ""),
        validation=os.getenv("BRANCHWORK_VALIDATION", "on").lower() not in ("off", "0", "false"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_int_env("PORT", 13013),
    )


def build_validator(settings: Settings) -> Validator:
    if not settings.validation:
        return PermissiveValidator()
    if settings.validator_url:
        return HttpValidator(settings.validator_url, api_key=settings.validator_key)
    return DocumentValidator()
