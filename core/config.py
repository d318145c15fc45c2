"""Configuration for the viability app.

Values come from environment variables, then a ``.env`` file, then the
defaults below.

Usage:
    from core.config import load_config, validate_config

    config = load_config()
    for issue in validate_config(config):
        print(f"Config issue: {issue}")
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from core.logging import DEFAULT_LOG_DIR

LOCALES_DIR = Path(__file__).resolve().parent / "locales"
MAX_PROJECTION_YEARS = 30


@dataclass
class Config:
    """Application configuration.

    Attributes:
        locale: Name of the translation file under core/locales
        projection_years: Horizon used by the financial view
        log_path: Directory for log files
        debug: Log DEBUG records to the console
    """

    locale: str = "pt"
    projection_years: int = 5
    log_path: Path = field(default_factory=lambda: DEFAULT_LOG_DIR)
    debug: bool = False


def load_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file of KEY=VALUE lines.

    Blank lines and ``#`` comments are skipped; matching quotes around a
    value are removed. A missing file gives an empty dict.
    """
    env_vars: dict[str, str] = {}

    if not path.exists():
        return env_vars

    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue

            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()

                if len(value) >= 2 and value[0] in ('"', "'") and value[-1] == value[0]:
                    value = value[1:-1]

                if key:
                    env_vars[key] = value

    return env_vars


def _get(key: str, env_vars: dict[str, str]) -> Optional[str]:
    return os.environ.get(key) or env_vars.get(key) or None


def _get_int(key: str, default: int, env_vars: dict[str, str]) -> int:
    value = _get(key, env_vars)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{key} must be an integer, got {value!r}") from e


def _get_bool(key: str, default: bool, env_vars: dict[str, str]) -> bool:
    value = _get(key, env_vars)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def load_config(env_file: Optional[Path] = None) -> Config:
    """Load configuration from environment and .env file.

    Priority:
        1. Environment variables (highest)
        2. .env file
        3. Default values (lowest)

    Args:
        env_file: Path to .env file. Defaults to .env in current directory.

    Raises:
        ValueError: If VIABILITY_PROJECTION_YEARS is not an integer.
    """
    if env_file is None:
        env_file = Path.cwd() / ".env"

    env_vars = load_env_file(Path(env_file))
    log_path = _get("VIABILITY_LOG_PATH", env_vars)

    return Config(
        locale=_get("VIABILITY_LOCALE", env_vars) or "pt",
        projection_years=_get_int("VIABILITY_PROJECTION_YEARS", 5, env_vars),
        log_path=Path(log_path).expanduser().resolve() if log_path else DEFAULT_LOG_DIR,
        debug=_get_bool("VIABILITY_DEBUG", False, env_vars),
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration.

    Returns:
        List of issues (empty if valid)
    """
    issues: list[str] = []

    if not 1 <= config.projection_years <= MAX_PROJECTION_YEARS:
        issues.append(
            f"Projection years must be between 1 and {MAX_PROJECTION_YEARS}: {config.projection_years}"
        )

    if not (LOCALES_DIR / f"{config.locale}.json").exists():
        issues.append(f"No translation file for locale: {config.locale}")

    try:
        config.log_path.mkdir(parents=True, exist_ok=True)
        if not os.access(config.log_path, os.W_OK):
            issues.append(f"Log directory not writable: {config.log_path}")
    except OSError as e:
        issues.append(f"Cannot create log directory {config.log_path}: {e}")

    return issues
