"""
Unit tests for storage layer.

Tests schema creation, record insertion, eviction and retrieval.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from cost_impact_monitor.storage.db import get_connection
from cost_impact_monitor.storage.models import DeploymentCostRecord
from cost_impact_monitor.storage.repository import (
    DeploymentHistoryRepository,
    fetch_deployment_history,
    initialize_schema,
    insert_deployment_record,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _record(space_id: str = "s-1", unit_id: str = "u-1", actual: float = 100.0,
            minutes: int = 0) -> DeploymentCostRecord:
    return DeploymentCostRecord(
        space_id=space_id,
        unit_id=unit_id,
        unit_name="checkout",
        deploy_time=T0 + timedelta(minutes=minutes),
        predicted_cost=95.0,
        actual_cost=actual,
        variance_pct=5.263,
        accurate=True,
    )


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify table is created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("PRAGMA table_info(deployment_cost_record)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == [
                    'id', 'space_id', 'unit_id', 'unit_name', 'deploy_time',
                    'predicted_cost', 'actual_cost', 'variance_pct', 'accurate'
                ]
            finally:
                conn.close()

    def test_schema_creation_idempotent(self):
        """Verify initializing twice is harmless."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)


class TestRecordStorage:
    """Test deployment record insertion and retrieval."""

    def test_insert_and_fetch(self):
        """Verify a record round-trips with all fields."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            record = _record()
            insert_deployment_record(record, db_path)

            assert fetch_deployment_history("s-1", db_path=db_path) == [record]

    def test_history_oldest_first(self):
        """Verify records come back in insertion order."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            for i in range(3):
                insert_deployment_record(_record(actual=float(i), minutes=i), db_path)

            history = fetch_deployment_history("s-1", db_path=db_path)
            assert [r.actual_cost for r in history] == [0.0, 1.0, 2.0]

    def test_eviction_per_space(self):
        """Verify only the newest records per space are kept."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            for i in range(5):
                insert_deployment_record(_record(actual=float(i)), db_path, limit=3)
            insert_deployment_record(_record(space_id="s-2"), db_path, limit=3)

            history = fetch_deployment_history("s-1", limit=10, db_path=db_path)
            assert [r.actual_cost for r in history] == [2.0, 3.0, 4.0]
            assert len(fetch_deployment_history("s-2", db_path=db_path)) == 1

    def test_unknown_space_is_empty(self):
        """Verify a space without records has an empty history."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            assert fetch_deployment_history("nope", db_path=db_path) == []


class TestDeploymentHistoryRepository:
    """Test the repository wrapper."""

    def test_append_and_history(self):
        """Verify the repository applies its limit."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repository = DeploymentHistoryRepository(os.path.join(temp_dir, "test.db"), limit=2)
            repository.initialize()
            for i in range(3):
                repository.append(_record(actual=float(i)))

            assert [r.actual_cost for r in repository.history("s-1")] == [1.0, 2.0]

    def test_invalid_limit(self):
        """Verify the limit must be positive."""
        with pytest.raises(ValueError, match="limit must be > 0"):
            DeploymentHistoryRepository("unused.db", limit=0)
