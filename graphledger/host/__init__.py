"""Host interface for GraphLedger.

Provides access to host environment settings (environment variables, the
default ledger location and the clock).
"""

from .environment import get_env, get_db_path
from .time import now_utc, now_iso

__all__ = [
    "get_env",
    "get_db_path",
    "now_utc",
    "now_iso",
]
