"""
Billow Backend — Home SQLAlchemy Model
=======================================

What:  ORM model for the `homes` table: one row per real-estate listing.
Why:   Maps listing records to Python objects for HomeStore queries.
How:   Inherits from the shared DeclarativeBase; Alembic migration 001 creates
       the same table plus the PostgreSQL full-text index.

Table Design Rationale:
    - UUID primary key: store-assigned, opaque, never reused
    - street: indexed because update/delete address homes by street.
      It is deliberately NOT unique; HomeStore applies a MatchPolicy instead.
    - image columns hold fully-qualified URIs, not storage paths
    - created_at: insertion order for listing pages

Full-text search:
    The search document is street, city, state, zip and description joined
    with spaces. `search_document()` builds the exact expression used by both
    the GIN index and the query, so PostgreSQL can match the index.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    literal_column,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

# PostgreSQL text search configuration used for indexing and querying
SEARCH_CONFIG = "english"

# Columns a client may write through create/update. Order matters for the API docs.
LISTING_FIELDS = (
    "price",
    "street",
    "city",
    "state",
    "zip",
    "lat",
    "lon",
    "bedrooms",
    "bathrooms",
    "square_feet",
    "description",
    "agent",
    "agent_phone",
    "agent_img",
    "house_img_main",
    "house_img_inside_1",
    "house_img_inside_2",
)

IMAGE_FIELDS = (
    "agent_img",
    "house_img_main",
    "house_img_inside_1",
    "house_img_inside_2",
)


class Home(Base):
    """
    A real-estate listing.

    Lifecycle:
        1. Created with every field present, including four uploaded images
        2. Partially updated by street match (field-level overwrite)
        3. Deleted by street match or by id — permanently, no soft-delete
    """

    __tablename__ = "homes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    price: Mapped[float] = mapped_column(Float, nullable=False)

    # ── Address ───────────────────────────────────────────────────────────
    street: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    city: Mapped[str] = mapped_column(String(120), nullable=False)
    state: Mapped[str] = mapped_column(String(64), nullable=False)
    zip: Mapped[str] = mapped_column(String(20), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)

    # ── Property ──────────────────────────────────────────────────────────
    bedrooms: Mapped[int] = mapped_column(Integer, nullable=False)
    # Float: half baths ("2.5") are common
    bathrooms: Mapped[float] = mapped_column(Float, nullable=False)
    square_feet: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # ── Agent ─────────────────────────────────────────────────────────────
    agent: Mapped[str] = mapped_column(String(120), nullable=False)
    agent_phone: Mapped[str] = mapped_column(String(40), nullable=False)
    agent_img: Mapped[str] = mapped_column(String(512), nullable=False)

    # ── Images ────────────────────────────────────────────────────────────
    house_img_main: Mapped[str] = mapped_column(String(512), nullable=False)
    house_img_inside_1: Mapped[str] = mapped_column(String(512), nullable=False)
    house_img_inside_2: Mapped[str] = mapped_column(String(512), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Home(id={self.id}, street='{self.street}', city='{self.city}')>"


def search_document():
    """
    The tsvector expression searched by HomeStore.search().

    Literal columns (not bind parameters) keep the rendered SQL identical to
    the GIN index expression, which is what lets the planner use the index.
    """
    sep = literal_column("' '", String)
    text_body = (
        Home.street + sep + Home.city + sep + Home.state + sep + Home.zip + sep + Home.description
    )
    return func.to_tsvector(literal_column(f"'{SEARCH_CONFIG}'"), text_body)


# GIN index only exists on PostgreSQL; SQLite test databases skip it.
Index("idx_homes_search", search_document(), postgresql_using="gin").ddl_if(
    dialect="postgresql"
)
