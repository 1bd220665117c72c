"""
Autobuy store operations.

Runs and their items, the sales feed, the IPS weight set and substitution
groups. Like the catalog operations, nothing here commits.
"""

import logging
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from manastash.models.autobuy import (
    DEFAULT_IPS_WEIGHTS,
    RunItemSnapshot,
    RunSnapshot,
    RunStatus,
    SaleEvent,
)
from manastash.models.db import (
    AutobuyRunDB,
    AutobuyRunItemDB,
    CardSaleDB,
    InventoryItemDB,
    IPSWeightDB,
    SubstitutionGroupDB,
    SubstitutionGroupMemberDB,
    as_utc,
    utcnow,
)
from manastash.models.inventory import TRASH

logger = logging.getLogger(__name__)


# --- Conversions ---


def run_to_snapshot(run: AutobuyRunDB) -> RunSnapshot:
    """Convert an ORM run to the value the analytics work on."""
    return RunSnapshot(
        id=run.id,
        created_at=as_utc(run.created_at),
        status=RunStatus(run.status),
        predicted_total=run.predicted_total,
        actual_total=run.actual_total,
        items=[
            RunItemSnapshot(
                card_id=item.card_id,
                card_name=item.card_name,
                predicted_unit=item.predicted_unit,
                predicted_qty=item.predicted_qty,
                actual_unit=item.actual_unit,
                actual_qty=item.actual_qty,
                dominant_weight=item.dominant_weight,
                purchased_at=as_utc(item.purchased_at) if item.purchased_at else None,
            )
            for item in run.items
        ],
    )


def sale_to_event(sale: CardSaleDB) -> SaleEvent:
    return SaleEvent(
        card_id=sale.card_id,
        card_name=sale.card_name,
        quantity=sale.quantity,
        unit_price=sale.unit_price,
        sold_at=as_utc(sale.sold_at),
    )


# --- Run Operations ---


async def create_run(
    session: AsyncSession,
    items: Sequence[AutobuyRunItemDB],
    weights: dict[str, float],
) -> AutobuyRunDB:
    """
    Insert a pending run with its predicted items.

    predicted_total is the sum of unit price times quantity.
    """
    run = AutobuyRunDB(
        status=RunStatus.PENDING.value,
        predicted_total=sum(item.predicted_unit * item.predicted_qty for item in items),
        item_count=len(items),
        purchased_count=0,
        weights=dict(weights),
        items=list(items),
    )
    session.add(run)
    await session.flush()
    return run


async def get_run(session: AsyncSession, run_id: int) -> AutobuyRunDB | None:
    """
    Get a run with its items.

    Returns None if the run does not exist.
    """
    return await session.get(AutobuyRunDB, run_id)


async def list_runs(session: AsyncSession, limit: int = 20) -> list[AutobuyRunDB]:
    """Most recent runs first."""
    result = await session.execute(
        select(AutobuyRunDB)
        .order_by(AutobuyRunDB.created_at.desc(), AutobuyRunDB.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def runs_since(session: AsyncSession, cutoff: datetime) -> list[AutobuyRunDB]:
    """Runs created at or after the cutoff, oldest first."""
    result = await session.execute(
        select(AutobuyRunDB)
        .where(AutobuyRunDB.created_at >= cutoff)
        .order_by(AutobuyRunDB.created_at, AutobuyRunDB.id)
    )
    return list(result.scalars().all())


async def purchased_items_for_card(session: AsyncSession, card_id: str) -> list[AutobuyRunItemDB]:
    """Every bought run item for a card, across all runs."""
    result = await session.execute(
        select(AutobuyRunItemDB)
        .where(AutobuyRunItemDB.card_id == card_id, AutobuyRunItemDB.actual_qty > 0)
        .order_by(AutobuyRunItemDB.id)
    )
    return list(result.scalars().all())


# --- Sales Operations ---


async def record_sale(
    session: AsyncSession,
    card_id: str,
    quantity: int,
    unit_price: float,
    sold_at: datetime | None = None,
    card_name: str | None = None,
) -> CardSaleDB:
    """Append a sale to the sales feed."""
    sale = CardSaleDB(
        card_id=card_id,
        card_name=card_name,
        quantity=quantity,
        unit_price=unit_price,
        sold_at=sold_at or utcnow(),
    )
    session.add(sale)
    await session.flush()
    return sale


async def list_sales(
    session: AsyncSession, since: datetime | None = None, card_id: str | None = None
) -> list[CardSaleDB]:
    """Sales in chronological order, optionally filtered."""
    stmt = select(CardSaleDB)
    if since is not None:
        stmt = stmt.where(CardSaleDB.sold_at >= since)
    if card_id is not None:
        stmt = stmt.where(CardSaleDB.card_id == card_id)
    result = await session.execute(stmt.order_by(CardSaleDB.sold_at, CardSaleDB.id))
    return list(result.scalars().all())


# --- IPS Weight Operations ---


async def get_weights(session: AsyncSession) -> dict[str, float]:
    """
    Current IPS weights.

    Seeds the defaults on first read; missing names fall back to defaults.
    """
    result = await session.execute(select(IPSWeightDB))
    stored = {row.name: row.value for row in result.scalars().all()}

    if not stored:
        for name, value in DEFAULT_IPS_WEIGHTS.items():
            session.add(IPSWeightDB(name=name, value=value))
        await session.flush()
        logger.info("Seeded default IPS weights")

    return {**DEFAULT_IPS_WEIGHTS, **stored}


async def set_weights(session: AsyncSession, weights: dict[str, float]) -> dict[str, float]:
    """Upsert weights by name. Validation is the caller's job."""
    for name, value in weights.items():
        row = await session.get(IPSWeightDB, name)
        if row is None:
            session.add(IPSWeightDB(name=name, value=value))
        else:
            row.value = value
    await session.flush()
    return await get_weights(session)


# --- Substitution Group Operations ---


async def list_groups(session: AsyncSession) -> list[SubstitutionGroupDB]:
    result = await session.execute(select(SubstitutionGroupDB).order_by(SubstitutionGroupDB.name))
    return list(result.scalars().all())


async def get_group(session: AsyncSession, group_id: int) -> SubstitutionGroupDB | None:
    return await session.get(SubstitutionGroupDB, group_id)


async def get_member(session: AsyncSession, scryfall_id: str) -> SubstitutionGroupMemberDB | None:
    """The group membership of a card, if it belongs to one."""
    result = await session.execute(
        select(SubstitutionGroupMemberDB).where(
            SubstitutionGroupMemberDB.scryfall_id == scryfall_id
        )
    )
    return result.scalar_one_or_none()


async def substitutes_by_card(
    session: AsyncSession, card_ids: Sequence[str]
) -> dict[str, list[str]]:
    """For each card in a group, the other members of that group."""
    if not card_ids:
        return {}

    member = SubstitutionGroupMemberDB
    groups_result = await session.execute(
        select(member.scryfall_id, member.group_id).where(member.scryfall_id.in_(list(card_ids)))
    )
    group_of = {card_id: group_id for card_id, group_id in groups_result.all()}
    if not group_of:
        return {}

    members_result = await session.execute(
        select(member.group_id, member.scryfall_id).where(
            member.group_id.in_(set(group_of.values()))
        )
    )
    by_group: dict[int, list[str]] = {}
    for group_id, scryfall_id in members_result.all():
        by_group.setdefault(group_id, []).append(scryfall_id)

    return {
        card_id: [other for other in by_group.get(group_id, []) if other != card_id]
        for card_id, group_id in group_of.items()
    }


async def available_by_scryfall_id(
    session: AsyncSession, scryfall_ids: Sequence[str]
) -> dict[str, int]:
    """Unreserved copies on hand per card, ignoring Trash."""
    if not scryfall_ids:
        return {}
    result = await session.execute(
        select(
            InventoryItemDB.scryfall_id,
            func.sum(InventoryItemDB.quantity - InventoryItemDB.reserved_quantity),
        )
        .where(
            InventoryItemDB.scryfall_id.in_(list(scryfall_ids)),
            InventoryItemDB.folder != TRASH,
        )
        .group_by(InventoryItemDB.scryfall_id)
    )
    return {scryfall_id: int(total or 0) for scryfall_id, total in result.all()}
