"""Environment variable access and ledger path resolution.

Path Resolution Order:
1. Explicit ledger file (GRAPHLEDGER_DB)
2. Shared data directory (GRAPHLEDGER_DATA_DIR/ledger.db)
3. Current directory (./ledger.db)
"""

import os
from pathlib import Path

LEDGER_DB_NAME = "ledger.db"


def get_env(key: str, default: str | None = None) -> str | None:
    """Get environment variable.

    Args:
        key: Environment variable name
        default: Default value if not found

    Returns:
        Environment variable value or default
    """
    return os.environ.get(key, default)


def get_db_path() -> Path:
    """Resolve the ledger database path.

    Returns:
        Path to database file

    Examples:
        >>> os.environ['GRAPHLEDGER_DB'] = '/custom/ledger.db'
        >>> get_db_path()
        Path('/custom/ledger.db')

        >>> os.environ['GRAPHLEDGER_DATA_DIR'] = '/data'
        >>> get_db_path()
        Path('/data/ledger.db')
    """
    explicit = get_env("GRAPHLEDGER_DB")
    if explicit:
        return Path(explicit)

    data_dir = get_env("GRAPHLEDGER_DATA_DIR")
    if data_dir:
        return Path(data_dir) / LEDGER_DB_NAME

    return Path(f"./{LEDGER_DB_NAME}")
