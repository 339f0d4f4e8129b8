"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class MovieRecord(Base):
    """Movie row owned by the movie repository."""

    __tablename__ = "movies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255))
    format: Mapped[str | None] = mapped_column(String(64), nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    acquired_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    title_status: Mapped[str] = mapped_column(String(16), default="owned")
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class CollectionRecord(Base):
    """A named group of movies: user tag, box set or the watch-next queue."""

    __tablename__ = "collections"
    __table_args__ = (
        UniqueConstraint("name", "type", name="uq_collection_name_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    type: Mapped[str] = mapped_column(String(16), default="user", index=True)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    memberships: Mapped[list["MembershipRecord"]] = relationship(
        back_populates="collection",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class MembershipRecord(Base):
    """Ordered link between a movie and a collection."""

    __tablename__ = "movie_collections"
    __table_args__ = (
        UniqueConstraint("movie_id", "collection_id", name="uq_movie_collection"),
        Index("ix_movie_collections_collection_order", "collection_id", "collection_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    movie_id: Mapped[int] = mapped_column(Integer, index=True)
    collection_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("collections.id", ondelete="CASCADE")
    )
    order: Mapped[int] = mapped_column("collection_order", Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    collection: Mapped[CollectionRecord] = relationship(back_populates="memberships")
