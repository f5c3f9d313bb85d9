from datetime import datetime, timezone

import pytest
from sqlalchemy import StaticPool, create_engine, event, select

from oro.errors import StorageError, TaskNotFound
from oro.gateway import TaskGateway
from oro.models import Base, InputTask, TaskDB


@pytest.fixture
def gateway():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    gateway = TaskGateway(engine)
    gateway.init_schema()

    yield gateway

    Base.metadata.drop_all(bind=engine)


def test_init_schema_is_idempotent(gateway):
    gateway.init_schema()
    assert gateway.find_all() == []


def test_insert_assigns_id_and_timestamps(gateway):
    task = gateway.insert(InputTask(title="Write report", is_important=True))
    assert task.id
    assert task.is_completed is False
    assert task.is_important is True
    assert task.created_at == task.updated_at
    assert task.deleted_at is None


def test_find_by_id_ignores_soft_deleted(gateway):
    task = gateway.insert(InputTask(title="Gone soon"))
    gateway.soft_delete(task.id)
    with pytest.raises(TaskNotFound):
        gateway.find_by_id(task.id)


def test_find_all_counts_live_rows(gateway):
    tasks = [gateway.insert(InputTask(title=f"Task {n}")) for n in range(5)]
    gateway.soft_delete(tasks[0].id)
    gateway.soft_delete(tasks[4].id)
    assert [task.id for task in gateway.find_all()] == [task.id for task in tasks[1:4]]


def test_update_only_touches_given_fields(gateway):
    due = datetime(2026, 5, 1, 8, 30, tzinfo=timezone.utc)
    task = gateway.insert(InputTask(title="Original", description="keep", due_date=due))

    updated = gateway.update(task.id, {"title": "Renamed"})

    assert updated.title == "Renamed"
    assert updated.description == "keep"
    assert updated.due_date == task.due_date
    assert updated.created_at == task.created_at
    assert updated.updated_at > task.updated_at


def test_update_rejects_unknown_columns(gateway):
    task = gateway.insert(InputTask(title="Original"))
    with pytest.raises(ValueError):
        gateway.update(task.id, {"is_completed": True})


def test_update_missing_task(gateway):
    with pytest.raises(TaskNotFound):
        gateway.update("nope", {"title": "x"})


def test_toggle_flips_and_restores(gateway):
    task = gateway.insert(InputTask(title="Flip me"))
    assert gateway.toggle(task.id, "complete").is_completed is True
    assert gateway.toggle(task.id, "complete").is_completed is False
    assert gateway.toggle(task.id, "important").is_important is True


def test_toggle_soft_deleted_task(gateway):
    task = gateway.insert(InputTask(title="Flip me"))
    gateway.soft_delete(task.id)
    with pytest.raises(TaskNotFound):
        gateway.toggle(task.id, "important")


def test_soft_delete_keeps_row(gateway):
    task = gateway.insert(InputTask(title="Archive"))
    gateway.soft_delete(task.id)

    with gateway.session() as db:
        row = db.scalars(select(TaskDB).where(TaskDB.id == task.id)).one()
    assert row.deleted_at is not None
    assert row.updated_at == row.deleted_at

    with pytest.raises(TaskNotFound):
        gateway.soft_delete(task.id)


def test_storage_failure_is_wrapped(gateway):
    Base.metadata.drop_all(bind=gateway.engine)
    with pytest.raises(StorageError) as exc:
        gateway.find_all()
    assert exc.value.message == "Internal server error"


def test_update_statement_skips_soft_deleted_rows(gateway):
    task = gateway.insert(InputTask(title="Original"))
    statements = []

    def delete_first(conn, cursor, statement, parameters, context, executemany):
        if statement.startswith("UPDATE task SET title") and not statements:
            # Soft-delete lands right before the write, in the same transaction.
            cursor.execute("UPDATE task SET deleted_at = CURRENT_TIMESTAMP WHERE id = ?", (task.id,))
            statements.append(statement)

    event.listen(gateway.engine, "before_cursor_execute", delete_first)
    try:
        with pytest.raises(TaskNotFound):
            gateway.update(task.id, {"title": "Resurrected"})
    finally:
        event.remove(gateway.engine, "before_cursor_execute", delete_first)

    assert "deleted_at IS NULL" in statements[0]
    assert gateway.find_by_id(task.id).title == "Original"
