"""
Tests for engine lifecycle, session scope and the portable column types.
"""

from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import StatementError

from billing_kernel.db.engine import (
    get_engine,
    get_session,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from billing_modules.counterparties.orm import VehicleModel


def _vehicle(ctx, registration="MH14XY0001", capacity="5000.125"):
    return VehicleModel(
        vendor_id=ctx.tenant_id,
        registration_number=registration,
        capacity_liters=Decimal(capacity),
        created_by_id=ctx.actor_id,
    )


class TestEngineLifecycle:
    def test_accessors_after_init(self, db_engine):
        assert get_engine() is db_engine
        session = get_session()
        try:
            assert session.bind is db_engine
        finally:
            session.close()

    def test_dialect_check(self, db_engine):
        assert is_postgres() == (db_engine.dialect.name == "postgresql")

    def test_accessors_before_init(self, tmp_path):
        init_engine_from_url(f"sqlite:///{tmp_path / 'scratch.db'}")
        reset_engine()

        with pytest.raises(RuntimeError):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session()
        assert not is_postgres()


class TestSessionScope:
    def test_commits_on_exit(self, db_engine, ctx):
        with session_scope() as session:
            session.add(_vehicle(ctx))

        with session_scope() as session:
            stored = session.execute(select(VehicleModel)).scalar_one()
            assert stored.capacity_liters == Decimal("5000.125")

    def test_rolls_back_and_reraises(self, db_engine, ctx, captured_logs):
        with pytest.raises(LookupError):
            with session_scope() as session:
                session.add(_vehicle(ctx))
                session.flush()
                raise LookupError("abandon")

        with session_scope() as session:
            assert session.execute(select(VehicleModel)).first() is None
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())


class TestColumnTypes:
    def test_timestamps_come_back_in_utc(self, db_engine, ctx):
        ist = timezone(timedelta(hours=5, minutes=30))
        with session_scope() as session:
            vehicle = _vehicle(ctx)
            vehicle.created_at = datetime(2026, 8, 1, 14, 30, tzinfo=ist)
            session.add(vehicle)

        with session_scope() as session:
            stored = session.execute(select(VehicleModel)).scalar_one()
            assert stored.created_at == datetime(2026, 8, 1, 9, 0, tzinfo=UTC)
            assert stored.created_at.tzinfo is not None
            assert stored.id.version == 4

    def test_naive_timestamp_rejected(self, db_engine, ctx):
        with pytest.raises(StatementError) as exc_info:
            with session_scope() as session:
                vehicle = _vehicle(ctx, registration=str(uuid4())[:10])
                vehicle.created_at = datetime(2026, 8, 1, 9, 0)
                session.add(vehicle)

        assert "Naive datetime" in str(exc_info.value)
