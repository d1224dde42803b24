"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup/teardown logic, reducing
duplication and ensuring consistent test environments.
"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator, Dict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from helpdesk.db.seed import seed_defaults
from helpdesk.db.session import enable_sqlite_savepoints
from helpdesk.models import Base, Group, TicketState, TicketPriority, UserRole
from helpdesk.services.notifier import MockNotifier
from tests.factories import OrganizationFactory, UserFactory, TicketFactory


# Test database URL
# WHY: Using SQLite for tests eliminates external database dependencies
# and makes tests faster.
TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """
    Create a test database engine.

    WHY: Function scope ensures each test gets a fresh database state,
    preventing test pollution and ensuring test isolation. The SQLite
    savepoint recipe is applied because merge, destroy and rule batches
    run in nested transactions.
    """
    engine = create_async_engine(TEST_ASYNC_DATABASE_URL, echo=False)
    enable_sqlite_savepoints(engine)

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a seeded test database session.

    Yields:
        AsyncSession: Session with default states, priorities, the system
        user and the default group in place
    """
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        await seed_defaults(session)
        yield session
        await session.rollback()


@pytest.fixture
def mock_notifier():
    """
    MockNotifier with an empty sent list.

    WHY: MockNotifier records on the class, so every test starts and ends clean.
    """
    MockNotifier.clear_sent()
    yield MockNotifier()
    MockNotifier.clear_sent()


@pytest_asyncio.fixture
async def states(db_session: AsyncSession) -> Dict[str, TicketState]:
    """Seeded ticket states by name."""
    result = await db_session.execute(select(TicketState))
    return {state.name: state for state in result.scalars().all()}


@pytest_asyncio.fixture
async def priorities(db_session: AsyncSession) -> Dict[str, TicketPriority]:
    """Seeded ticket priorities by name."""
    result = await db_session.execute(select(TicketPriority))
    return {priority.name: priority for priority in result.scalars().all()}


@pytest_asyncio.fixture
async def default_group(db_session: AsyncSession) -> Group:
    """The seeded "Users" group, with a sender address for email notifications."""
    result = await db_session.execute(select(Group).where(Group.name == "Users"))
    group = result.scalar_one()
    group.email_address = "support@helpdesk.example.com"
    await db_session.flush()
    return group


@pytest_asyncio.fixture
async def test_org(db_session: AsyncSession):
    """
    Create a shared test organization.

    WHY: Customer-visibility tests need customers that share an organization.
    """
    return await OrganizationFactory.create(db_session, name="Example Foundation", shared=True)


@pytest_asyncio.fixture
async def agent(db_session: AsyncSession, default_group):
    """Agent with full access to the default group."""
    return await UserFactory.create(
        db_session,
        firstname="Agent",
        lastname="Smith",
        email="agent@example.com",
        role=UserRole.AGENT,
        group_access={"Users": "full"},
    )


@pytest_asyncio.fixture
async def customer(db_session: AsyncSession, test_org):
    """Customer of test_org."""
    return await UserFactory.create(
        db_session,
        firstname="Nicole",
        lastname="Braun",
        email="nicole.braun@example.com",
        role=UserRole.CUSTOMER,
        organization=test_org,
    )


@pytest_asyncio.fixture
async def ticket(db_session: AsyncSession, default_group, customer, agent):
    """Ticket of customer in the default group, owned by agent."""
    return await TicketFactory.create(
        db_session,
        customer=customer,
        owner=agent,
        title="Printer does not print",
    )
