"""Regularization configuration and settings."""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

from ..src.models import AutoRegularizationConfig, YearConfiguration

load_dotenv()

# Paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
DATA_DIR = Path(os.getenv("REGULARIZATION_DATA_DIR", PROJECT_ROOT / "data"))
OUTPUT_DIR = DATA_DIR / "output"
CONFIG_PATH = Path(os.getenv("REGULARIZATION_CONFIG", Path(__file__).parent / "regularization.yaml"))

DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR}/saaq.db")

# Seconds the auto-regularization pass waits for pairs + hierarchy
DEFAULT_DEPENDENCY_WAIT = 60.0


def ensure_dirs() -> None:
    for d in [DATA_DIR, OUTPUT_DIR]:
        d.mkdir(parents=True, exist_ok=True)


def load_regularization_config(path: Path | None = None) -> dict:
    """Load regularization configuration from YAML."""
    with open(path or CONFIG_PATH, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_year_configuration(config: dict | None = None) -> YearConfiguration:
    config = config if config is not None else load_regularization_config()
    years = config.get("years", {})
    return YearConfiguration(
        curated_years=set(years.get("curated", [])),
        uncurated_years=set(years.get("uncurated", [])),
    )


def load_auto_regularization_config(config: dict | None = None) -> AutoRegularizationConfig:
    config = config if config is not None else load_regularization_config()
    auto = config.get("auto_regularization", {})
    sentinels = config.get("unknown_codes", {})
    return AutoRegularizationConfig(
        use_cardinal_types=auto.get("use_cardinal_types", True),
        cardinal_vehicle_type_codes=auto.get("cardinal_vehicle_type_codes", []),
        placeholder_descriptions=auto.get(
            "placeholder_descriptions", ["not specified", "not assigned", "non spécifié"]
        ),
        unknown_fuel_type_code=sentinels.get("fuel_type", "U"),
        unknown_vehicle_type_code=sentinels.get("vehicle_type", "UK"),
        dependency_wait_seconds=float(auto.get("dependency_wait_seconds", DEFAULT_DEPENDENCY_WAIT)),
    )
