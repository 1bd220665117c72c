from collections.abc import Sequence
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from manastash.db.database import get_session, transaction
from manastash.db.operations import create_deck_instance
from manastash.main import app
from manastash.models.db import Base, DeckInstanceDB, InventoryItemDB
from manastash.models.deck import DeckCardLine
from manastash.models.inventory import NewItem
from manastash.services import folder_service, inventory_service
from manastash.services.undo_log import reset_undo_registry


@pytest.fixture(autouse=True)
def clear_undo_history():
    """Undo logs live at process level; start every test with empty history."""
    reset_undo_registry()
    yield
    reset_undo_registry()


@pytest.fixture
async def async_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def session(async_engine) -> AsyncSession:
    """Provide a database session for tests."""
    async_session = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session


@pytest.fixture
async def client(async_engine):
    """Provide an async test client with overridden database session."""
    async_session = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_session():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_item(session: AsyncSession):
    """Add and commit an inventory item. Prices are given as strings."""

    async def _make(
        name: str = "Sol Ring",
        quantity: int = 1,
        price: str | None = None,
        **fields,
    ) -> InventoryItemDB:
        new_item = NewItem(
            name=name,
            quantity=quantity,
            purchase_price=Decimal(price) if price is not None else None,
            **fields,
        )
        async with transaction(session):
            item = await inventory_service.add_item(session, new_item)
        return item

    return _make


@pytest.fixture
def make_deck(session: AsyncSession):
    """Create and commit a deck instance from (name, quantity) pairs."""

    async def _make(name: str, cards: Sequence[tuple[str, int]]) -> DeckInstanceDB:
        async with transaction(session):
            deck = await create_deck_instance(
                session, name, [DeckCardLine(name=card, quantity=qty) for card, qty in cards]
            )
        return deck

    return _make


@pytest.fixture
def make_folder(session: AsyncSession):
    async def _make(name: str, description: str | None = None) -> str:
        async with transaction(session):
            change = await folder_service.create_folder(session, name, description)
        return change.name

    return _make
