"""Configuration management for GraphLedger.

Configuration is loaded from a TOML file.

Configuration Resolution Order:
1. Environment variables (highest priority)
2. TOML config file
3. Built-in defaults

TOML LAYOUT:
    [ledger]
    database_path = "/var/lib/graphledger/ledger.db"

    [graph]
    changes_dir = "/var/lib/graphledger/changes"

    [logging]
    level = "info"
"""

import logging
import os
import sys
import warnings
from pathlib import Path
from typing import Optional, Any

# Python 3.11+ has tomllib in stdlib, otherwise use tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .host.environment import get_db_path

DEFAULT_LOG_LEVEL = "info"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def load_toml_config(config_path: Path) -> dict[str, Any]:
    """Load configuration from TOML file.

    Args:
        config_path: Path to config.toml file

    Returns:
        Dictionary with configuration sections

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is invalid TOML
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e


def get_config_path(config_override: Optional[Path] = None) -> Path:
    """Get configuration file path.

    GRAPHLEDGER_CONFIG overrides the default ~/.config/graphledger/config.toml.
    """
    if config_override:
        return config_override

    env_path = os.environ.get("GRAPHLEDGER_CONFIG")
    if env_path:
        return Path(env_path)

    return Path.home() / ".config/graphledger/config.toml"


class Settings:
    """Ledger settings with TOML configuration support.

    Attributes:
        database_path: Ledger database file
        changes_dir: Directory of change set files (None when unused)
        log_level: Logging level name
    """

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize settings.

        Args:
            config_path: Optional explicit path to config.toml
        """
        self._config: dict[str, Any] = {}

        config_path = get_config_path(config_path)
        if config_path.exists():
            try:
                self._config = load_toml_config(config_path)
            except ValueError as e:
                warnings.warn(f"Failed to load config from {config_path}: {e}")

        self._apply_config()

    def _apply_config(self):
        """Apply settings in order env var > TOML > default."""
        ledger_config = self._config.get("ledger", {})
        graph_config = self._config.get("graph", {})
        logging_config = self._config.get("logging", {})

        # get_db_path() already honours GRAPHLEDGER_DB and GRAPHLEDGER_DATA_DIR
        if "GRAPHLEDGER_DB" in os.environ or "GRAPHLEDGER_DATA_DIR" in os.environ:
            self.database_path = get_db_path()
        elif ledger_config.get("database_path"):
            self.database_path = Path(ledger_config["database_path"])
        else:
            self.database_path = get_db_path()

        changes_dir = os.environ.get("GRAPHLEDGER_CHANGES_DIR", graph_config.get("changes_dir"))
        self.changes_dir = Path(changes_dir) if changes_dir else None

        self.log_level = os.environ.get(
            "GRAPHLEDGER_LOG_LEVEL",
            logging_config.get("level", DEFAULT_LOG_LEVEL)
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return getattr(self, key, default)


def configure_logging(level: str = DEFAULT_LOG_LEVEL):
    """Install a stream handler on the root logger at the given level.

    Raises:
        ValueError: If level is not a logging level name
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level!r}")
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger("graphledger").setLevel(numeric)
