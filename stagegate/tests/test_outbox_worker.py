import asyncio
import logging

import pytest
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError

from stagegate.services import outbox_worker
from stagegate.services.outbox_worker import OutboxWorkerSettings


def _run_until_cancelled(monkeypatch, failures):
    """Make the first lock attempts raise ``failures`` in order, then cancel the loop."""
    attempts = []

    def _acquire(_db):
        attempts.append(len(attempts) + 1)
        if len(attempts) <= len(failures):
            raise failures[len(attempts) - 1]
        raise asyncio.CancelledError()

    monkeypatch.setattr(outbox_worker, "try_acquire_outbox_lock", _acquire)
    monkeypatch.setattr(outbox_worker, "_tag_session", lambda _db, _name: None)

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(outbox_worker.outbox_worker_loop(OutboxWorkerSettings(poll_seconds=0)))
    return attempts


def test_worker_keeps_polling_after_unexpected_lock_error(monkeypatch, caplog):
    caplog.set_level(logging.ERROR, logger=outbox_worker.logger.name)

    attempts = _run_until_cancelled(
        monkeypatch,
        [PoolTimeoutError("QueuePool limit reached"), PoolTimeoutError("QueuePool limit reached")],
    )

    assert len(attempts) == 3
    failures = [r for r in caplog.records if getattr(r, "reason", None) == "outer_unexpected"]
    assert len(failures) == 2
    assert failures[0].exc_info is not None


def test_worker_drops_pooled_connections_after_connection_failure(monkeypatch):
    dropped = []
    monkeypatch.setattr(outbox_worker, "_drop_pooled_connections", lambda: dropped.append(True))

    attempts = _run_until_cancelled(
        monkeypatch,
        [OperationalError("select pg_try_advisory_lock(:a, :b)", {}, Exception("server closed the connection"))],
    )

    assert len(attempts) == 2
    assert dropped == [True]


def test_worker_is_disabled_under_pytest():
    assert outbox_worker.outbox_worker_enabled() is False
