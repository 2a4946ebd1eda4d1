"""
Repository pattern for data access.

Persists each space's bounded deployment cost history.
"""

from datetime import datetime
from typing import List

from .db import DEFAULT_DB_PATH, get_connection
from .models import DeploymentCostRecord

HISTORY_LIMIT = 100

_COLUMNS = (
    "space_id, unit_id, unit_name, deploy_time, predicted_cost, "
    "actual_cost, variance_pct, accurate"
)


class DeploymentHistoryRepository:
    """Repository for the per-space deployment cost history.

    Each space keeps at most ``limit`` records; older ones are evicted
    first when new records arrive.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, limit: int = HISTORY_LIMIT):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
            limit: Records retained per space
        """
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self.db_path = db_path
        self.limit = limit

    def initialize(self) -> None:
        initialize_schema(self.db_path)

    def append(self, record: DeploymentCostRecord) -> None:
        insert_deployment_record(record, self.db_path, self.limit)

    def history(self, space_id: str) -> List[DeploymentCostRecord]:
        return fetch_deployment_history(space_id, self.limit, self.db_path)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the deployment_cost_record table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS deployment_cost_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                space_id TEXT NOT NULL,
                unit_id TEXT NOT NULL,
                unit_name TEXT NOT NULL,
                deploy_time TEXT NOT NULL,
                predicted_cost REAL NOT NULL,
                actual_cost REAL NOT NULL,
                variance_pct REAL NOT NULL,
                accurate INTEGER NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_deployment_cost_record_space
            ON deployment_cost_record (space_id, id)
        """)
        conn.commit()
    finally:
        conn.close()


def insert_deployment_record(
    record: DeploymentCostRecord,
    db_path: str = DEFAULT_DB_PATH,
    limit: int = HISTORY_LIMIT,
) -> None:
    """Append a record and evict the space's oldest records beyond ``limit``.

    Insert and eviction happen in one transaction.

    Args:
        record: The deployment record to store
        db_path: Path to SQLite database file
        limit: Records retained for the record's space
    """
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN TRANSACTION")
        conn.execute(f"""
            INSERT INTO deployment_cost_record ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.space_id,
            record.unit_id,
            record.unit_name,
            record.deploy_time.isoformat(),
            record.predicted_cost,
            record.actual_cost,
            record.variance_pct,
            int(record.accurate),
        ))
        conn.execute("""
            DELETE FROM deployment_cost_record
            WHERE space_id = ? AND id NOT IN (
                SELECT id FROM deployment_cost_record
                WHERE space_id = ?
                ORDER BY id DESC LIMIT ?
            )
        """, (record.space_id, record.space_id, limit))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def fetch_deployment_history(
    space_id: str,
    limit: int = HISTORY_LIMIT,
    db_path: str = DEFAULT_DB_PATH,
) -> List[DeploymentCostRecord]:
    """Fetch a space's most recent records, oldest first.

    Args:
        space_id: Space to fetch history for
        limit: Maximum number of records to return
        db_path: Path to SQLite database file

    Returns:
        Deployment records in insertion order (oldest first)
    """
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(f"""
            SELECT {_COLUMNS} FROM (
                SELECT id, {_COLUMNS} FROM deployment_cost_record
                WHERE space_id = ?
                ORDER BY id DESC LIMIT ?
            ) ORDER BY id ASC
        """, (space_id, limit))
        return [
            DeploymentCostRecord(
                space_id=row[0],
                unit_id=row[1],
                unit_name=row[2],
                deploy_time=datetime.fromisoformat(row[3]),
                predicted_cost=row[4],
                actual_cost=row[5],
                variance_pct=row[6],
                accurate=bool(row[7]),
            )
            for row in cursor.fetchall()
        ]
    finally:
        conn.close()
