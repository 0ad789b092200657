"""
Configuration constants and environment setup.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# =============================================================================
# DEFAULTS
# =============================================================================

PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_STORE_PATH = PROJECT_ROOT / "data" / "store.json"

DEFAULT_WEEKLY_OVERTIME_THRESHOLD = Decimal("40")
DEFAULT_OVERTIME_MULTIPLIER = Decimal("1.5")
DEFAULT_OVERTIME_POLICY = "whole_range"
DEFAULT_INVOICE_NUMBER_PREFIX = "INV-"

DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:8080",
    "http://localhost:3000",
    "http://127.0.0.1:8080",
]


def _env_list(name: str) -> list[str]:
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    weekly_overtime_threshold: Decimal = DEFAULT_WEEKLY_OVERTIME_THRESHOLD
    overtime_policy: str = DEFAULT_OVERTIME_POLICY
    default_overtime_multiplier: Decimal = DEFAULT_OVERTIME_MULTIPLIER
    store_path: Path = DEFAULT_STORE_PATH
    invoice_number_prefix: str = DEFAULT_INVOICE_NUMBER_PREFIX
    strict_validation: bool = False
    log_level: str = "INFO"
    allowed_origins: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))


def load_settings() -> Settings:
    """Read settings from the environment (and ``.env`` if present)."""
    return Settings(
        weekly_overtime_threshold=Decimal(
            os.environ.get("WEEKLY_OVERTIME_THRESHOLD", str(DEFAULT_WEEKLY_OVERTIME_THRESHOLD))
        ),
        overtime_policy=os.environ.get("OVERTIME_POLICY", DEFAULT_OVERTIME_POLICY),
        default_overtime_multiplier=Decimal(
            os.environ.get("DEFAULT_OVERTIME_MULTIPLIER", str(DEFAULT_OVERTIME_MULTIPLIER))
        ),
        store_path=Path(os.environ.get("BULK_INVOICE_STORE", str(DEFAULT_STORE_PATH))),
        invoice_number_prefix=os.environ.get("INVOICE_NUMBER_PREFIX", DEFAULT_INVOICE_NUMBER_PREFIX),
        strict_validation=os.environ.get("STRICT_VALIDATION", "false").lower() == "true",
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        allowed_origins=_env_list("ALLOWED_ORIGINS") or list(DEFAULT_ALLOWED_ORIGINS),
    )
