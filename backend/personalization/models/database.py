"""
SQLAlchemy database models for the personalization core.
Uses SQLAlchemy 2.0 async patterns.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# =============================================================================
# Base
# =============================================================================

class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all database models."""
    pass


# =============================================================================
# Interest Profiles
# =============================================================================

class DBInterestProfile(Base):
    """A user's weighted interests, stored as JSON lists of entries."""
    __tablename__ = "interest_profiles"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    topics_json: Mapped[list] = mapped_column(JSON, default=list)
    categories_json: Mapped[list] = mapped_column(JSON, default=list)
    source_types_json: Mapped[list] = mapped_column(JSON, default=list)
    explicit_preferences_json: Mapped[dict] = mapped_column(JSON, default=dict)
    adaptive_weights_json: Mapped[dict] = mapped_column(JSON, default=dict)

    learning_rate: Mapped[float] = mapped_column(Float, default=0.1)
    decay_rate: Mapped[float] = mapped_column(Float, default=0.95)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())


class DBScoringConfig(Base):
    """Per-user relevance weights adapted by the learner."""
    __tablename__ = "scoring_configs"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    weights_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    recency_decay_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())


# =============================================================================
# Focus Areas
# =============================================================================

class DBFocusArea(Base):
    """User-defined topical filter."""
    __tablename__ = "focus_areas"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")

    topics_json: Mapped[list] = mapped_column(JSON, default=list)
    categories_json: Mapped[list] = mapped_column(JSON, default=list)
    keywords_json: Mapped[list] = mapped_column(JSON, default=list)
    source_types_json: Mapped[list] = mapped_column(JSON, default=list)

    priority: Mapped[str] = mapped_column(String(20), default="medium")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Match statistics
    content_count: Mapped[int] = mapped_column(Integer, default=0)
    last_matched_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_focus_areas_user", "user_id"),
        Index("ix_focus_areas_user_created", "user_id", "created_at"),
    )


class DBActiveFilterSet(Base):
    """Ordered ids of a user's active focus areas."""
    __tablename__ = "active_filter_sets"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    focus_area_ids_json: Mapped[list] = mapped_column(JSON, default=list)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())


# =============================================================================
# Database Connection
# =============================================================================

class Database:
    """Database connection manager."""

    def __init__(self, database_url: str, echo: bool = False):
        self.engine = create_async_engine(
            database_url,
            echo=echo,
        )
        self.async_session = async_sessionmaker(
            self.engine,
            expire_on_commit=False,
        )

    async def create_tables(self):
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self):
        """Drop all tables (use with caution!)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self):
        await self.engine.dispose()
