"""
Pytest configuration and shared fixtures.

Every test gets its own in-memory SQLite database (aiosqlite) with the full
schema, a mock voice provider and a mocked realtime publisher. API tests go
through ``httpx.AsyncClient`` on the ASGI app with the database, provider,
publisher and settings dependencies overridden.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import date, datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rivvi.ai.models import ChatRequest, ChatResponse, LLMProvider
from rivvi.ai.openai_adapter import LLMGateway
from rivvi.campaigns.models import CallDirection, Campaign, CampaignTemplate
from rivvi.config import Settings, get_settings
from rivvi.main import create_app
from rivvi.organizations.models import Organization, User
from rivvi.patients.models import Patient
from rivvi.patients.service import PatientService
from rivvi.realtime.publisher import RealtimePublisher, get_realtime_publisher
from rivvi.runs.models import Row, RowStatus, Run, RunStatus, empty_run_metadata
from rivvi.shared.database import Base, get_db_session
from rivvi.telephony.factory import get_telephony_provider
from rivvi.telephony.mock_adapter import MockTelephonyProvider

TEST_JWT_SECRET = "test-jwt-secret-key-for-unit-tests-only"
# base64 of "rivvi-test-webhook-secret"
TEST_WEBHOOK_SECRET = "whsec_cml2dmktdGVzdC13ZWJob29rLXNlY3JldA=="

VARIABLES_CONFIG: dict[str, Any] = {
    "patient": {
        "fields": [
            {
                "key": "first_name",
                "label": "First Name",
                "possible_columns": ["first name", "firstname", "patient first name"],
                "required": True,
                "transform": "text",
            },
            {
                "key": "last_name",
                "label": "Last Name",
                "possible_columns": ["last name", "lastname", "patient last name"],
                "required": True,
                "transform": "text",
            },
            {
                "key": "dob",
                "label": "Date of Birth",
                "possible_columns": ["dob", "date of birth", "birth date"],
                "required": True,
                "transform": "short_date",
            },
            {
                "key": "primary_phone",
                "label": "Phone",
                "possible_columns": ["phone", "phone number", "cell phone"],
                "required": True,
                "transform": "phone",
            },
        ],
        "validation": {
            "require_valid_phone": True,
            "require_valid_dob": True,
            "require_name": True,
        },
    },
    "campaign": {
        "fields": [
            {
                "key": "appointment_date",
                "label": "Appointment Date",
                "possible_columns": ["appointment date", "appt date"],
                "required": False,
                "transform": "long_date",
            },
            {
                "key": "appointment_time",
                "label": "Appointment Time",
                "possible_columns": ["appointment time", "appt time"],
                "required": False,
                "transform": "time",
            },
        ]
    },
}

ANALYSIS_CONFIG: dict[str, Any] = {
    "standard": {
        "fields": [
            {"key": "patient_reached", "label": "Patient Reached", "type": "boolean"},
        ]
    },
    "campaign": {
        "fields": [
            {
                "key": "appointment_confirmed",
                "label": "Appointment Confirmed",
                "type": "boolean",
                "is_main_kpi": True,
            },
            {
                "key": "preferred_contact",
                "label": "Preferred Contact",
                "type": "enum",
                "options": ["phone", "sms", "email"],
            },
        ]
    },
}

PATIENT_CSV = (
    "First Name,Last Name,DOB,Phone,Appointment Date,Appointment Time\n"
    "Jane,Doe,03/15/1980,(555) 123-4567,04/02/2025,2:30 PM\n"
    "John,Smith,1975-07-04,555-987-6543,04/03/2025,09:15\n"
)


class FakeGateway(LLMGateway):
    """Returns a canned completion or raises a canned error."""

    def __init__(self, content: str = "", error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.requests: list[ChatRequest] = []

    @property
    def provider(self) -> LLMProvider:
        return LLMProvider.OPENAI

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return ChatResponse(
            content=self.content,
            model="fake",
            provider=self.provider,
            correlation_id=request.correlation_id,
            latency_ms=1.0,
        )


# =============================================================================
# Database
# =============================================================================


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
    factory = async_sessionmaker(db_engine, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def provider() -> MockTelephonyProvider:
    provider = MockTelephonyProvider()
    provider.add_agent("agent_test", "llm_test", prompt="Base prompt", voicemail="Please call us back.")
    return provider


@pytest.fixture
def publisher() -> AsyncMock:
    return AsyncMock(spec=RealtimePublisher)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        app_env="dev",
        jwt_secret_key=TEST_JWT_SECRET,
        jwt_algorithm="HS256",
        clerk_webhook_secret=TEST_WEBHOOK_SECRET,
        app_base_url="https://rivvi.test",
    )


# =============================================================================
# Model factories
# =============================================================================


@pytest_asyncio.fixture
async def organization(db_session: AsyncSession) -> Organization:
    org = Organization(
        clerk_id="org_test_clinic",
        name="Test Clinic",
        phone="5550001111",
        timezone="America/New_York",
        office_hours=None,
        concurrent_call_limit=20,
    )
    db_session.add(org)
    await db_session.flush()
    return org


@pytest_asyncio.fixture
async def user(db_session: AsyncSession, organization: Organization) -> User:
    member = User(
        clerk_id="user_test_member",
        org_id=organization.id,
        email="member@clinic.test",
        first_name="Morgan",
        last_name="Lee",
        role="admin",
    )
    db_session.add(member)
    await db_session.flush()
    return member


@pytest_asyncio.fixture
async def super_admin(db_session: AsyncSession) -> User:
    admin_org = Organization(clerk_id="org_rivvi_admin", name="Rivvi", is_super_admin=True)
    db_session.add(admin_org)
    await db_session.flush()
    admin = User(
        clerk_id="user_super_admin",
        org_id=admin_org.id,
        email="ops@rivvi.test",
        role="admin",
    )
    db_session.add(admin)
    await db_session.flush()
    return admin


@pytest_asyncio.fixture
async def template(db_session: AsyncSession) -> CampaignTemplate:
    tpl = CampaignTemplate(
        name="Appointment Confirmation",
        description="Confirms upcoming appointments",
        agent_id="agent_test",
        llm_id="llm_test",
        base_prompt="You are calling {{first_name}} from {{organization_name}}. Confirm the appointment on {{appointment_date}}.",
        voicemail_message="Hi {{first_name}}, please call us back.",
        variables_config=VARIABLES_CONFIG,
        analysis_config=ANALYSIS_CONFIG,
    )
    db_session.add(tpl)
    await db_session.flush()
    return tpl


@pytest_asyncio.fixture
async def campaign(
    db_session: AsyncSession,
    organization: Organization,
    template: CampaignTemplate,
) -> Campaign:
    outbound = Campaign(
        org_id=organization.id,
        name="Appointment Confirmation",
        template_id=template.id,
        direction=CallDirection.OUTBOUND,
        is_active=True,
        metadata_={},
    )
    db_session.add(outbound)
    await db_session.flush()
    return outbound


@pytest_asyncio.fixture
async def patient(db_session: AsyncSession, organization: Organization) -> Patient:
    created, _ = await PatientService(db_session).find_or_create(
        first_name="Jane",
        last_name="Doe",
        dob=date(1980, 3, 15),
        phone="(555) 123-4567",
        org_id=organization.id,
    )
    return created


RunFactory = Callable[..., Awaitable[Run]]


@pytest.fixture
def make_run(db_session: AsyncSession, campaign: Campaign) -> RunFactory:
    """Create a run with ``rows`` pending rows, one per given patient or phone."""

    async def _make(
        status: RunStatus = RunStatus.READY,
        patients: list[Patient] | None = None,
        phones: list[str] | None = None,
        scheduled_at: datetime | None = None,
        name: str = "April confirmations",
    ) -> Run:
        run = Run(
            campaign_id=campaign.id,
            org_id=campaign.org_id,
            name=name,
            status=status,
            scheduled_at=scheduled_at,
            metadata_=empty_run_metadata(),
        )
        db_session.add(run)
        await db_session.flush()

        index = 0
        for p in patients or []:
            db_session.add(
                Row(
                    run_id=run.id,
                    org_id=run.org_id,
                    patient_id=p.id,
                    variables={"first_name": p.first_name, "appointment_date": "Wednesday, April 2, 2025"},
                    status=RowStatus.PENDING,
                    sort_index=index,
                )
            )
            index += 1
        for phone in phones or []:
            db_session.add(
                Row(
                    run_id=run.id,
                    org_id=run.org_id,
                    variables={"phone": phone},
                    status=RowStatus.PENDING,
                    sort_index=index,
                )
            )
            index += 1
        await db_session.flush()
        return run

    return _make


# =============================================================================
# Auth
# =============================================================================


@pytest.fixture
def make_token(test_settings: Settings) -> Callable[..., str]:
    def _make(sub: str, org_id: str | None = None, expires_in: timedelta = timedelta(hours=1)) -> str:
        claims: dict[str, Any] = {
            "sub": sub,
            "exp": datetime.now(timezone.utc) + expires_in,
            "iat": datetime.now(timezone.utc),
        }
        if org_id is not None:
            claims["org_id"] = org_id
        return jwt.encode(claims, test_settings.jwt_secret_key, algorithm=test_settings.jwt_algorithm)

    return _make


@pytest.fixture
def auth_headers(
    make_token: Callable[..., str],
    user: User,
    organization: Organization,
) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user.clerk_id, organization.clerk_id)}"}


@pytest.fixture
def super_admin_headers(make_token: Callable[..., str], super_admin: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(super_admin.clerk_id, 'org_rivvi_admin')}"}


# =============================================================================
# Application
# =============================================================================


@pytest.fixture
def app(
    db_session: AsyncSession,
    provider: MockTelephonyProvider,
    publisher: AsyncMock,
    test_settings: Settings,
):
    application = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    application.dependency_overrides[get_db_session] = _session
    application.dependency_overrides[get_telephony_provider] = lambda: provider
    application.dependency_overrides[get_realtime_publisher] = lambda: publisher
    application.dependency_overrides[get_settings] = lambda: test_settings
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
