import asyncio
import logging
import os
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from stagegate import database
from stagegate.database import SessionLocal
from stagegate.services.outbox_processor import (
    OutboxProcessResult,
    process_outbox_batch,
    release_outbox_lock,
    try_acquire_outbox_lock,
)

logger = logging.getLogger(__name__)

_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class OutboxWorkerSettings:
    poll_seconds: float = 1.0
    batch_size: int = 50
    max_retries: int = 10

    @classmethod
    def from_env(cls) -> "OutboxWorkerSettings":
        return cls(
            poll_seconds=_env_float("OUTBOX_POLL_SECONDS", cls.poll_seconds),
            batch_size=_env_int("OUTBOX_BATCH_SIZE", cls.batch_size),
            max_retries=_env_int("OUTBOX_MAX_RETRIES", cls.max_retries),
        )


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        logger.warning("Ignoring invalid integer setting", extra={"setting": name, "value": v})
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if not v:
        return default
    try:
        return float(v)
    except ValueError:
        logger.warning("Ignoring invalid number setting", extra={"setting": name, "value": v})
        return default


def outbox_worker_enabled() -> bool:
    # Tests drive process_outbox_batch directly.
    if os.getenv("PYTEST_CURRENT_TEST"):
        return False
    v = os.getenv("OUTBOX_WORKER_ENABLED")
    if v is None:
        return True
    return v.strip().lower() not in _FALSE_VALUES


def _tag_session(db: Session, name: str) -> None:
    try:
        db.execute(text("select set_config('application_name', :name, false)"), {"name": name})
    except SQLAlchemyError:
        logger.debug("Could not set application_name", extra={"application_name": name})


def _drop_pooled_connections() -> None:
    """After a connection-level failure, make the next attempt open fresh connections."""
    if database.engine is None:
        return
    try:
        database.engine.dispose()
    except SQLAlchemyError:
        logger.warning("Could not dispose database engine", exc_info=True)


def _run_tick(settings: OutboxWorkerSettings) -> OutboxProcessResult:
    db: Session = SessionLocal()
    try:
        _tag_session(db, "stagegate_outbox_tick")
        result = process_outbox_batch(
            db=db,
            batch_size=settings.batch_size,
            max_retries=settings.max_retries,
        )
        db.commit()
        return result
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


async def _deliver_while_holding_lock(settings: OutboxWorkerSettings) -> None:
    while True:
        try:
            result = await asyncio.to_thread(_run_tick, settings)
            if result.processed or result.failed:
                logger.info(
                    "Outbox batch delivered",
                    extra={
                        "processed": result.processed,
                        "failed": result.failed,
                        "abandoned": result.abandoned,
                    },
                )
        except DBAPIError:
            logger.exception("Outbox tick failed", extra={"reason": "dbapi_error"})
            _drop_pooled_connections()
        except Exception:
            logger.exception("Outbox tick failed", extra={"reason": "unexpected"})

        await asyncio.sleep(settings.poll_seconds)


async def outbox_worker_loop(settings: OutboxWorkerSettings) -> None:
    """
    Deliver notification events until cancelled.

    Every app process may run this loop; a Postgres advisory lock held on a
    dedicated connection lets exactly one of them deliver at a time. Database
    failures are logged and retried on the next poll.
    """
    logger.info(
        "Outbox worker started",
        extra={
            "poll_seconds": settings.poll_seconds,
            "batch_size": settings.batch_size,
            "max_retries": settings.max_retries,
        },
    )

    while True:
        lock_db: Session = SessionLocal()
        have_lock = False
        try:
            _tag_session(lock_db, "stagegate_outbox_lock")
            have_lock = try_acquire_outbox_lock(lock_db)
            if have_lock:
                await _deliver_while_holding_lock(settings)

        except asyncio.CancelledError:
            logger.info("Outbox worker cancelled; shutting down")
            raise

        except DBAPIError:
            logger.exception("Outbox lock connection failed", extra={"reason": "lock_dbapi_error"})
            _drop_pooled_connections()

        except Exception:
            # The worker runs for the life of the app; keep polling.
            logger.exception("Outbox worker loop failed", extra={"reason": "outer_unexpected"})

        finally:
            if have_lock:
                try:
                    release_outbox_lock(lock_db)
                except SQLAlchemyError:
                    logger.warning("Outbox advisory lock release failed", exc_info=True)
            try:
                lock_db.close()
            except SQLAlchemyError:
                logger.warning("Outbox lock session close failed", exc_info=True)

        await asyncio.sleep(settings.poll_seconds)


def start_outbox_worker_task() -> asyncio.Task | None:
    if not outbox_worker_enabled():
        logger.info("Outbox worker disabled")
        return None

    return asyncio.create_task(outbox_worker_loop(OutboxWorkerSettings.from_env()))
