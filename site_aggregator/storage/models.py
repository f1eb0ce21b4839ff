"""
SQLAlchemy models for the site database.

sources is the registry the supervisor reconciles against;
readings is the append-only log written by pollers.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class SourceModel(Base):
    """
    Registered data source.

    Sources are deactivated rather than deleted.
    """
    __tablename__ = "sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Polling configuration
    interval_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_run: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Collector selection
    test_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    arguments: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Multi-tenant grouping (rows live in the API database)
    site_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    company_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.current_timestamp()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.current_timestamp(),
        onupdate=func.current_timestamp(),
    )


class ReadingModel(Base):
    """
    One poll result.

    Rows are inserted by pollers and never updated.
    """
    __tablename__ = "readings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sources.id"), nullable=False
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.current_timestamp()
    )
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    quality_flags: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Indexes
    __table_args__ = (
        Index("idx_readings_source_time", "source_id", "timestamp"),
        Index("idx_readings_timestamp", "timestamp"),
    )
