import uuid
from datetime import datetime, timezone

from pydantic import AliasGenerator, BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

Base = declarative_base()

CAMEL_ALIASES = AliasGenerator(validation_alias=to_camel, serialization_alias=to_camel)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_task_id() -> str:
    return str(uuid.uuid4())


# ---------- Database Models ----------
class TaskDB(Base):
    __tablename__ = "task"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_task_id)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_important: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    def __repr__(self) -> str:
        return (
            f"Task(id: {self.id}, title: '{self.title}', completed: {self.is_completed}, "
            f"important: {self.is_important}, deleted: {self.deleted_at is not None})"
        )

    def to_dict(self) -> dict:
        return {key: getattr(self, column) for column, key in TASK_JSON_KEYS.items()}


# Column -> JSON key for every Task field exposed over the API.
TASK_JSON_KEYS = {
    "id": "id",
    "title": "title",
    "description": "description",
    "is_completed": "isCompleted",
    "is_important": "isImportant",
    "due_date": "dueDate",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "deleted_at": "deletedAt",
}

# Columns a client may write through the update operation.
UPDATABLE_COLUMNS = frozenset({"title", "description", "due_date"})


# ---------- Data Models ----------
def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("title must not be empty")
    return value


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite keeps only the wall-clock part of a timestamp.
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc)


class InputTask(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, alias_generator=CAMEL_ALIASES)

    title: str
    description: str = ""
    is_important: bool = False
    due_date: datetime | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        return _not_blank(value)

    @field_validator("description", mode="before")
    @classmethod
    def null_description(cls, value: str | None) -> str:
        return "" if value is None else value

    @field_validator("due_date")
    @classmethod
    def due_date_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class UpdateTask(BaseModel):
    """Body of a partial update.

    Only keys present in the request are applied: ``model_fields_set`` keeps
    "omitted" apart from "explicitly set to an empty value".
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, alias_generator=CAMEL_ALIASES)

    title: str | None = None
    description: str | None = None
    due_date: datetime | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str | None) -> str:
        if value is None:
            raise ValueError("title must not be null")
        return _not_blank(value)

    @field_validator("description", mode="before")
    @classmethod
    def null_description(cls, value: str | None) -> str:
        return "" if value is None else value

    @field_validator("due_date")
    @classmethod
    def due_date_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    def changes(self) -> dict:
        return self.model_dump(include=self.model_fields_set)


class OutputTask(BaseModel):
    model_config = ConfigDict(alias_generator=CAMEL_ALIASES)

    id: str
    title: str
    description: str
    is_completed: bool
    is_important: bool
    due_date: datetime | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None

    @classmethod
    def from_db(cls, task: TaskDB) -> "OutputTask":
        return cls(**task.to_dict())

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ApiError(BaseModel):
    code: str
    message: str
