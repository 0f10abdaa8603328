"""
Pytest configuration and fixtures for the dialer tests.

Every test gets a fresh in-memory SQLite database (aiosqlite) and the mock
telephony provider. API tests share the test session with the app through
dependency overrides.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime
from typing import Any
from uuid import UUID

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dialer.agents.models import Agent, AgentStatus
from dialer.calls.bridge import CallBridge
from dialer.calls.models import CallQueueEntry, CallStatus, DialerCall, MachineDetectionResult
from dialer.config import Settings
from dialer.contacts.models import Contact, ContactStatus
from dialer.events.publisher import CallStatusUpdate, get_event_publisher
from dialer.main import app
from dialer.shared.database import Base, get_db_session, utcnow
from dialer.telephony.config import ProviderType, TelephonyConfig
from dialer.telephony.factory import get_telephony_config, get_telephony_provider
from dialer.telephony.mock_adapter import MockTelephonyProvider


class RecordingPublisher:
    """In-memory publisher capturing every update."""

    def __init__(self) -> None:
        self.updates: list[CallStatusUpdate] = []

    async def publish(self, update: CallStatusUpdate) -> bool:
        self.updates.append(update)
        return True

    async def close(self) -> None:
        return None

    def statuses(self) -> list[str]:
        return [u.status for u in self.updates]


class DialerFactory:
    """Creates committed rows for tests."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._phone_seq = 0
        self._sid_seq = 0
        self._user_seq = 0

    def _next_phone(self) -> str:
        self._phone_seq += 1
        return f"+1555010{self._phone_seq:04d}"

    def next_sid(self) -> str:
        self._sid_seq += 1
        return f"CATEST{self._sid_seq:06d}"

    async def contact(
        self,
        name: str = "Jane Borrower",
        phone_number: str | None = None,
        status: ContactStatus = ContactStatus.NOT_CONTACTED,
        last_call_timestamp: datetime | None = None,
        created_at: datetime | None = None,
    ) -> Contact:
        contact = Contact(
            name=name,
            phone_number=phone_number or self._next_phone(),
            status=status,
            last_call_timestamp=last_call_timestamp,
            created_at=created_at or utcnow(),
        )
        self._session.add(contact)
        await self._session.commit()
        return contact

    async def agent(
        self,
        status: AgentStatus = AgentStatus.AVAILABLE,
        idle_since: datetime | None = None,
        name: str | None = None,
        current_call_id: UUID | None = None,
    ) -> Agent:
        self._user_seq += 1
        agent = Agent(
            user_id=f"user-{self._user_seq}",
            name=name or f"Agent {self._user_seq}",
            status=status,
            current_call_id=current_call_id,
            last_status_change=idle_since or utcnow(),
        )
        self._session.add(agent)
        await self._session.commit()
        return agent

    async def call(
        self,
        contact: Contact | None = None,
        status: CallStatus = CallStatus.IN_PROGRESS,
        sid: str | None = "auto",
        agent: Agent | None = None,
        amd: MachineDetectionResult | None = None,
        started_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DialerCall:
        if contact is None:
            contact = await self.contact(status=ContactStatus.IN_PROGRESS)
        call = DialerCall(
            contact_id=contact.id,
            agent_id=agent.id if agent else None,
            twilio_call_sid=self.next_sid() if sid == "auto" else sid,
            status=status,
            machine_detection_result=amd,
            start_timestamp=started_at or utcnow(),
            call_metadata=dict(metadata or {}),
        )
        self._session.add(call)
        await self._session.commit()
        return call

    async def queue_entry(
        self,
        call: DialerCall,
        priority: int = 1,
        created: datetime | None = None,
        assigned_to: Agent | None = None,
    ) -> CallQueueEntry:
        entry = CallQueueEntry(
            call_id=call.id,
            priority=priority,
            created_timestamp=created or utcnow(),
            assigned_to_agent_id=assigned_to.id if assigned_to else None,
            assigned_timestamp=utcnow() if assigned_to else None,
        )
        self._session.add(entry)
        await self._session.commit()
        return entry


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def factory(db_session: AsyncSession) -> DialerFactory:
    return DialerFactory(db_session)


@pytest.fixture
def telephony_config() -> TelephonyConfig:
    return TelephonyConfig(
        provider_type=ProviderType.MOCK,
        twilio_account_sid="ACTEST00000000000000000000000000",
        twilio_auth_token="test_auth_token",
        twilio_from_number="+15550000000",
        twilio_api_key="SKTEST00000000000000000000000000",
        twilio_api_secret="test_api_secret",
        twilio_twiml_app_sid="APTEST00000000000000000000000000",
        webhook_base_url="https://dialer.example.com",
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(dialer_max_concurrent_calls_per_agent=2)


@pytest.fixture
def mock_provider(telephony_config: TelephonyConfig) -> MockTelephonyProvider:
    return MockTelephonyProvider(telephony_config)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def bridge(mock_provider: MockTelephonyProvider, telephony_config: TelephonyConfig) -> CallBridge:
    return CallBridge(mock_provider, telephony_config)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    mock_provider: MockTelephonyProvider,
    telephony_config: TelephonyConfig,
    publisher: RecordingPublisher,
) -> AsyncGenerator[AsyncClient, None]:
    async def _override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db_session] = _override_get_db_session
    app.dependency_overrides[get_telephony_provider] = lambda: mock_provider
    app.dependency_overrides[get_telephony_config] = lambda: telephony_config
    app.dependency_overrides[get_event_publisher] = lambda: publisher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
