import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine, not_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .errors import StorageError, TaskNotFound
from .models import UPDATABLE_COLUMNS, Base, InputTask, TaskDB, utcnow

logger = logging.getLogger(__name__)

# Every statement touching task rows goes through this predicate: soft-deleted
# rows are never read or written.
LIVE = TaskDB.deleted_at.is_(None)

TOGGLES = {
    "complete": TaskDB.is_completed,
    "important": TaskDB.is_important,
}


def _live_task(task_id: str):
    return (TaskDB.id == task_id) & LIVE


class TaskGateway:
    """Reads and writes Task rows. Owns the schema of the ``task`` table."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    @classmethod
    def from_url(cls, url: str, **engine_kwargs) -> "TaskGateway":
        return cls(create_engine(url, **engine_kwargs))

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Storage failure: %s", exc.__class__.__name__)
            raise StorageError() from exc
        finally:
            db.close()

    def init_schema(self) -> None:
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as exc:
            logger.exception("Unable to create task schema")
            raise StorageError("Unable to create task schema") from exc
        logger.info("Task schema ready")

    def insert(self, task: InputTask) -> TaskDB:
        now = utcnow()
        new_task = TaskDB(
            title=task.title,
            description=task.description,
            is_completed=False,
            is_important=task.is_important,
            due_date=task.due_date,
            created_at=now,
            updated_at=now,
        )
        with self.session() as db:
            db.add(new_task)
            db.commit()
            db.refresh(new_task)
        logger.info("Created task %s", new_task.id)
        return new_task

    def find_all(self) -> list[TaskDB]:
        with self.session() as db:
            return list(db.scalars(select(TaskDB).where(LIVE).order_by(TaskDB.created_at, TaskDB.id)))

    def find_by_id(self, task_id: str) -> TaskDB:
        with self.session() as db:
            task = db.scalars(select(TaskDB).where(_live_task(task_id))).first()
        if task is None:
            raise TaskNotFound(task_id)
        return task

    def update(self, task_id: str, fields: dict) -> TaskDB:
        """Apply only ``fields`` to the live task and refresh ``updated_at``."""
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {', '.join(sorted(unknown))}")

        with self.session() as db:
            result = db.execute(
                update(TaskDB)
                .where(_live_task(task_id))
                .values(**fields, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                raise TaskNotFound(task_id)
            db.commit()
            task = db.scalars(select(TaskDB).where(_live_task(task_id))).first()
        if task is None:
            raise TaskNotFound(task_id)
        logger.info("Updated task %s (%s)", task_id, ", ".join(sorted(fields)) or "no fields")
        return task

    def toggle(self, task_id: str, flag: str) -> TaskDB:
        """Flip a boolean flag in one UPDATE so the read-modify-write stays in the store."""
        column = TOGGLES[flag]
        with self.session() as db:
            result = db.execute(
                update(TaskDB)
                .where(_live_task(task_id))
                .values({column: not_(column), TaskDB.updated_at: utcnow()})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                raise TaskNotFound(task_id)
            db.commit()
            task = db.scalars(select(TaskDB).where(_live_task(task_id))).first()
        if task is None:
            raise TaskNotFound(task_id)
        logger.info("Toggled %s on task %s", column.key, task_id)
        return task

    def soft_delete(self, task_id: str) -> None:
        now = utcnow()
        with self.session() as db:
            result = db.execute(
                update(TaskDB)
                .where(_live_task(task_id))
                .values(deleted_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                raise TaskNotFound(task_id)
            db.commit()
        logger.info("Soft-deleted task %s", task_id)
