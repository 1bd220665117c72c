"""
SQLAlchemy ORM models for persistent storage.

Table names follow the store layout used by the HTTP API. Reservations point
at inventory items and deck instances; neither points back except by query,
and `inventory_items.reserved_quantity` is a denormalized counter kept equal
to the sum of its reservations.
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates

from manastash.models.inventory import UNSORTED


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps (SQLite returns them without tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class InventoryItemDB(Base):
    """
    A line of physical copies sharing name, printing, finish and quality.

    `folder` holds a folder name; "Unsorted" and "Trash" have no folder row.
    """

    __tablename__ = "inventory_items"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_item_quantity_nonneg"),
        CheckConstraint("reserved_quantity >= 0", name="ck_item_reserved_nonneg"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_item_reserved_le_quantity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    name_lower: Mapped[str] = mapped_column(String(255), index=True)
    set_code: Mapped[str] = mapped_column(String(16), default="")
    collector_number: Mapped[str | None] = mapped_column(String(16), nullable=True)
    finish: Mapped[str] = mapped_column(String(16), default="normal")
    quality: Mapped[str] = mapped_column(String(8), default="NM")
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    reserved_quantity: Mapped[int] = mapped_column(Integer, default=0)
    purchase_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    purchase_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    scryfall_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    folder: Mapped[str] = mapped_column(String(255), default=UNSORTED, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_modified: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    @validates("name")
    def _sync_name_lower(self, _key: str, value: str) -> str:
        self.name_lower = value.strip().lower()
        return value

    @property
    def available(self) -> int:
        return self.quantity - self.reserved_quantity

    def __repr__(self) -> str:
        return (
            f"<InventoryItemDB(id={self.id}, name={self.name}, "
            f"qty={self.quantity}, reserved={self.reserved_quantity})>"
        )


class FolderDB(Base):
    """A user-created folder. Names are unique case-insensitively."""

    __tablename__ = "folders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    name_lower: Mapped[str] = mapped_column(String(255), unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @validates("name")
    def _sync_name_lower(self, _key: str, value: str) -> str:
        self.name_lower = value.strip().lower()
        return value

    def __repr__(self) -> str:
        return f"<FolderDB(name={self.name})>"


class DeckTemplateDB(Base):
    """
    Desired composition of a deck.

    Owns no physical copies; `cards` is an ordered list of
    {name, quantity, set_code, collector_number} dicts.
    """

    __tablename__ = "deck_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    format: Mapped[str] = mapped_column(String(50), default="commander")
    commander_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    archidekt_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Deck contents stored as JSON, in decklist order
    cards: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<DeckTemplateDB(id={self.id}, name={self.name}, format={self.format})>"


class DeckInstanceDB(Base):
    """A built, physical deck. Its `cards` are a snapshot taken at build time."""

    __tablename__ = "deck_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    template_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("deck_templates.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    cards: Mapped[list["DeckInstanceCardDB"]] = relationship(
        back_populates="deck",
        cascade="all, delete-orphan",
        order_by="DeckInstanceCardDB.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<DeckInstanceDB(id={self.id}, name={self.name})>"


class DeckInstanceCardDB(Base):
    """One line of a deck instance's snapshot composition."""

    __tablename__ = "deck_instance_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deck_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("deck_instances.id", ondelete="CASCADE"), index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    name: Mapped[str] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    set_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    collector_number: Mapped[str | None] = mapped_column(String(16), nullable=True)

    deck: Mapped["DeckInstanceDB"] = relationship(back_populates="cards")

    def __repr__(self) -> str:
        return f"<DeckInstanceCardDB(deck={self.deck_id}, card={self.name}, qty={self.quantity})>"


class ReservationDB(Base):
    """A claim of `quantity_reserved` copies of one inventory item by one deck instance."""

    __tablename__ = "reservations"
    __table_args__ = (
        UniqueConstraint("deck_id", "inventory_item_id", name="uq_reservation_deck_item"),
        CheckConstraint("quantity_reserved > 0", name="ck_reservation_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deck_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("deck_instances.id", ondelete="CASCADE"), index=True
    )
    inventory_item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("inventory_items.id", ondelete="RESTRICT"), index=True
    )
    quantity_reserved: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<ReservationDB(id={self.id}, deck={self.deck_id}, "
            f"item={self.inventory_item_id}, qty={self.quantity_reserved})>"
        )


class SubstitutionGroupDB(Base):
    """Cards that share demand pressure when scoring purchases."""

    __tablename__ = "substitution_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    members: Mapped[list["SubstitutionGroupMemberDB"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="SubstitutionGroupMemberDB.id",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<SubstitutionGroupDB(id={self.id}, name={self.name})>"


class SubstitutionGroupMemberDB(Base):
    """A card in a substitution group. A card belongs to at most one group."""

    __tablename__ = "substitution_group_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("substitution_groups.id", ondelete="CASCADE"), index=True
    )
    scryfall_id: Mapped[str] = mapped_column(String(64), unique=True)
    card_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    group: Mapped["SubstitutionGroupDB"] = relationship(back_populates="members")

    def __repr__(self) -> str:
        return f"<SubstitutionGroupMemberDB(group={self.group_id}, card={self.scryfall_id})>"


class AutobuyRunDB(Base):
    """A batch of buying decisions and, once recorded, their actuals."""

    __tablename__ = "autobuy_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    status: Mapped[str] = mapped_column(String(32), default="pending", index=True)
    predicted_total: Mapped[float] = mapped_column(Float, default=0.0)
    actual_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    purchased_count: Mapped[int] = mapped_column(Integer, default=0)
    item_count: Mapped[int] = mapped_column(Integer, default=0)

    # IPS weights in force when the run was scored
    weights: Mapped[dict[str, float]] = mapped_column(JSON, default=dict)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[list["AutobuyRunItemDB"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="AutobuyRunItemDB.id",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<AutobuyRunDB(id={self.id}, status={self.status})>"


Index("ix_autobuy_runs_created_at_desc", AutobuyRunDB.created_at.desc())


class AutobuyRunItemDB(Base):
    """One predicted purchase within a run."""

    __tablename__ = "autobuy_run_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("autobuy_runs.id", ondelete="CASCADE"), index=True
    )
    card_id: Mapped[str] = mapped_column(String(64), index=True)
    card_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    predicted_unit: Mapped[float] = mapped_column(Float)
    predicted_qty: Mapped[int] = mapped_column(Integer)
    actual_unit: Mapped[float | None] = mapped_column(Float, nullable=True)
    actual_qty: Mapped[int | None] = mapped_column(Integer, nullable=True)
    dominant_weight: Mapped[str | None] = mapped_column(String(64), nullable=True)
    seller_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    marketplace: Mapped[str | None] = mapped_column(String(64), nullable=True)
    purchased_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    run: Mapped["AutobuyRunDB"] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<AutobuyRunItemDB(run={self.run_id}, card={self.card_id})>"


class CardSaleDB(Base):
    """A sale event from the sales feed; drives sell-through."""

    __tablename__ = "card_sales"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    card_id: Mapped[str] = mapped_column(String(64), index=True)
    card_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_price: Mapped[float] = mapped_column(Float)
    sold_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<CardSaleDB(card={self.card_id}, qty={self.quantity})>"


class IPSWeightDB(Base):
    """Current value of one named IPS weight."""

    __tablename__ = "ips_weights"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[float] = mapped_column(Float)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<IPSWeightDB(name={self.name}, value={self.value})>"
