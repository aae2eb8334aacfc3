import os
_default_test_secret = "test-jwt-secret-for-pytest-only-0000000000000000"
if len(os.environ.get("JWT_SECRET", "")) < 32:
    os.environ["JWT_SECRET"] = _default_test_secret
os.environ.setdefault("ENV", "test")

import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url

TEST_DATABASE_URL = os.getenv("DATABASE_URL", "postgresql://localhost/stagegate_test")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from stagegate import database
from stagegate.database import SessionLocal
from stagegate.services import notification_service, project_service, reviewer_registry, workflow_service

DEFAULT_STAGES = (("Design", "blue"), ("Legal", "purple"))


def _ensure_database_exists(database_url: str) -> None:
    url = make_url(database_url)

    if not url.drivername.startswith("postgresql"):
        return

    db_name = url.database
    admin_url = url.set(database="postgres")
    admin_engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")

    try:
        with admin_engine.connect() as conn:
            exists = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": db_name},
            ).scalar()
            if not exists:
                safe_db_name = db_name.replace('"', '""')
                conn.execute(text(f'CREATE DATABASE "{safe_db_name}"'))
    finally:
        admin_engine.dispose()


def _truncate_all() -> None:
    with database.engine.begin() as conn:
        rows = conn.execute(
            text(
                """
                SELECT tablename
                FROM pg_tables
                WHERE schemaname = 'public'
                  AND tablename <> 'alembic_version'
                """
            )
        ).fetchall()

        table_names = [row[0] for row in rows]
        if table_names:
            quoted = ", ".join([f'"public"."{name}"' for name in table_names])
            conn.execute(text(f"TRUNCATE TABLE {quoted} RESTART IDENTITY CASCADE"))


@pytest.fixture(scope="session", autouse=True)
def _prepare_test_database() -> None:
    _ensure_database_exists(TEST_DATABASE_URL)

    env = os.environ.copy()
    env["DATABASE_URL"] = TEST_DATABASE_URL

    subprocess.run(
        ["alembic", "upgrade", "head"],
        check=True,
        cwd=Path(__file__).resolve().parents[2],
        env=env,
    )

    database.configure_database()


@pytest.fixture(scope="function", autouse=True)
def _truncate_tables_between_tests():
    _truncate_all()
    yield
    _truncate_all()


@pytest.fixture
def recording_dispatcher():
    recorder = notification_service.RecordingNotificationDispatcher()
    previous = notification_service.set_dispatcher(recorder)
    try:
        yield recorder
    finally:
        notification_service.set_dispatcher(previous)


@pytest.fixture
def workflow_factory():
    def _create(organization_id: int = 1, stages=DEFAULT_STAGES, name: str = "Brand review", **kwargs):
        db = SessionLocal()
        try:
            workflow = workflow_service.create_workflow(
                organization_id=organization_id,
                name=name,
                stages=[
                    {"order": i + 1, "name": stage_name, "color": color}
                    for i, (stage_name, color) in enumerate(stages)
                ],
                db=db,
                **kwargs,
            )
            db.commit()
            db.refresh(workflow)
            return workflow
        finally:
            db.close()

    return _create


@pytest.fixture
def project_factory():
    def _create(organization_id: int = 1, workflow_id=None, created_by: str = "owner-1", name: str = "Spring launch"):
        db = SessionLocal()
        try:
            project = project_service.create_project(
                organization_id=organization_id,
                name=name,
                workflow_id=workflow_id,
                created_by=created_by,
                db=db,
            )
            db.commit()
            db.refresh(project)
            return project
        finally:
            db.close()

    return _create


@pytest.fixture
def reviewer_factory():
    def _create(project_id: int, stage_order: int, reviewer_id: str, reviewer_name=None):
        db = SessionLocal()
        try:
            row = reviewer_registry.assign(
                project_id=project_id,
                stage_order=stage_order,
                reviewer_id=reviewer_id,
                reviewer_name=reviewer_name or reviewer_id.title(),
                added_by="owner-1",
                db=db,
            )
            db.commit()
            db.refresh(row)
            return row
        finally:
            db.close()

    return _create


@pytest.fixture
def mockup_factory():
    def _create(organization_id: int = 1, project_id=None, created_by: str = "designer-1", name: str = "Homepage hero"):
        db = SessionLocal()
        try:
            mockup, _warnings = project_service.create_mockup(
                organization_id=organization_id,
                name=name,
                project_id=project_id,
                created_by=created_by,
                created_by_name="Designer One",
                db=db,
            )
            db.commit()
            db.refresh(mockup)
            return mockup
        finally:
            db.close()

    return _create


@pytest.fixture
def design_legal(workflow_factory, project_factory, reviewer_factory):
    """Two-stage workflow: Design needs alice and bob, Legal needs carol."""
    workflow = workflow_factory()
    project = project_factory(workflow_id=workflow.id)
    reviewer_factory(project.id, 1, "alice")
    reviewer_factory(project.id, 1, "bob")
    reviewer_factory(project.id, 2, "carol")
    return SimpleNamespace(organization_id=1, workflow=workflow, project=project)
