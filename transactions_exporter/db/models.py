"""ORM model for the key-value table that holds persisted sessions."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class CaptureState(Base):
    __tablename__ = "capture_state"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    # Serialized CaptureSession JSON, exactly as produced by store.dump_session
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


__all__ = ["Base", "CaptureState"]
