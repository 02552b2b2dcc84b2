"""Notification model — user-facing messages about order events."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Index
from sqlmodel import SQLModel, Field, Column


class Notification(SQLModel, table=True):
    __tablename__ = "notification"
    __table_args__ = (
        Index("ix_notification_user_created", "user_id", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: str
    type: str = "info"  # "info", "success", "warning", "error"
    title: str
    message: str
    data: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    read: bool = False
    read_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
