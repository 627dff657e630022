"""
System settings model.

One row per settings category. The row key is the category's dot-path
(e.g. "features.tasks", "limits", "security") and the value is the JSON
object stored under it; the settings tree is the nesting of all rows.
"""
from typing import Any
from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin


class SystemSetting(Base, TimestampMixin):
    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(26), nullable=True)

    def __repr__(self) -> str:
        return f"<SystemSetting(key={self.key!r})>"
