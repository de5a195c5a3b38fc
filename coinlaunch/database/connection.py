"""
Shared sqlite connection setup
"""

import sqlite3
from datetime import datetime

# Configure SQLite to handle datetime properly for Python 3.12+
sqlite3.register_adapter(datetime, lambda dt: dt.isoformat())
sqlite3.register_converter("timestamp", lambda b: datetime.fromisoformat(b.decode()))

# Seconds a writer waits on a locked database before failing
BUSY_TIMEOUT = 10.0


def connect(db_path: str) -> sqlite3.Connection:
    """Open a short-lived connection; callers use it as a context manager"""
    conn = sqlite3.connect(
        db_path,
        timeout=BUSY_TIMEOUT,
        detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        isolation_level=None,  # Explicit BEGIN / COMMIT below
    )
    conn.row_factory = sqlite3.Row
    return conn
