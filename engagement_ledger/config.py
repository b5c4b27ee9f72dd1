"""Configuration loading for the engagement ledger.

Settings come from defaults, then an optional YAML file, then environment
variables:

    LEDGER_CONFIG      path to a YAML settings file
    LEDGER_DATA_DIR    directory holding the JSON tables
    LEDGER_LOG_LEVEL   logging level name (INFO, DEBUG, ...)
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import jsonschema
import yaml

DEFAULT_DATA_DIR = Path.cwd() / "data"

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "data_dir": {"type": "string", "minLength": 1},
        "page_size": {"type": "integer", "minimum": 1},
        "monthly_window": {"type": "integer", "minimum": 1, "maximum": 24},
        "growth_window": {"type": "integer", "minimum": 1, "maximum": 36},
        "urgent_horizon_days": {"type": "integer", "minimum": 0},
        "signed_url_expiry_seconds": {"type": "integer", "minimum": 1},
        "max_fetch_workers": {"type": "integer", "minimum": 1},
        "log_level": {
            "type": "string",
            "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        },
    },
    "additionalProperties": False,
}


@dataclass
class LedgerConfig:
    """Runtime settings for stores, views and the CLI."""

    data_dir: Path = DEFAULT_DATA_DIR
    page_size: int = 25
    monthly_window: int = 6
    growth_window: int = 12
    urgent_horizon_days: int = 7
    signed_url_expiry_seconds: int = 300
    max_fetch_workers: int = 6
    log_level: str = "INFO"

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)

    @classmethod
    def from_mapping(cls, data: dict) -> "LedgerConfig":
        """Build a config from a validated mapping, ignoring unset keys."""
        jsonschema.validate(instance=data, schema=CONFIG_SCHEMA)
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict:
        return {
            "data_dir": str(self.data_dir),
            "page_size": self.page_size,
            "monthly_window": self.monthly_window,
            "growth_window": self.growth_window,
            "urgent_horizon_days": self.urgent_horizon_days,
            "signed_url_expiry_seconds": self.signed_url_expiry_seconds,
            "max_fetch_workers": self.max_fetch_workers,
            "log_level": self.log_level,
        }


def load_config(path: Optional[Path] = None, environ: Optional[dict] = None) -> LedgerConfig:
    """Load settings from YAML (if any) and apply environment overrides."""
    environ = os.environ if environ is None else environ
    path = path or (Path(environ["LEDGER_CONFIG"]) if environ.get("LEDGER_CONFIG") else None)

    data: dict = {}
    if path is not None:
        with open(path) as f:
            data = yaml.safe_load(f) or {}

    if environ.get("LEDGER_DATA_DIR"):
        data["data_dir"] = environ["LEDGER_DATA_DIR"]
    if environ.get("LEDGER_LOG_LEVEL"):
        data["log_level"] = environ["LEDGER_LOG_LEVEL"].upper()

    return LedgerConfig.from_mapping(data)


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging for command-line use."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
