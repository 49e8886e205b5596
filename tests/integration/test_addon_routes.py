"""
Add-on card endpoints over real access and insight services backed by
in-memory stand-ins for the backend, calendar and assistant.
"""

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from app.auth.verify import current_user_email
from app.config import Settings
from app.main import app
from app.models.domain.backend_domain import Found, NotFound
from app.models.domain.calendar_domain import MeetingEvent
from app.services.access.access_resolver import AccessResolver
from app.services.assistant.assistant_runner import RunTimeoutError
from app.services.calendar.google_client import GoogleCalendarError
from app.services.container import get_services
from app.services.infrastructure.cache_store import MemoryCacheStore
from app.services.insights.insight_service import InsightService

ANA = {"_id": "u1", "email": "a@acme.com", "companyId": "acme", "role": "admin"}
ACME = {"_id": "acme", "assistantId": "asst_123", "status": "active", "domain": "acme.com"}
EVENT = {
    "id": "evt_1",
    "summary": "Quarterly review",
    "start": {"dateTime": "2099-01-01T10:00:00Z"},
    "attendees": [{"email": "a@acme.com"}],
}


class Records:
    def __init__(self, *records):
        self.records = list(records)

    async def lookup(self, filters):
        for record in self.records:
            if all(str(record.get(k, "")).lower() == str(v).lower() for k, v in filters.items()):
                return Found(record)
        return NotFound()

    async def lookup_by_id(self, entity_id):
        return await self.lookup({"_id": entity_id})

    async def find(self, filters):
        outcome = await self.lookup(filters)
        return outcome.value if isinstance(outcome, Found) else None

    async def create(self, data):
        record = {"_id": f"u{len(self.records) + 1}", **data}
        self.records.append(record)
        return record


class Calendar:
    def __init__(self):
        self.events = {"evt_1": EVENT}
        self.error = None

    async def get_event(self, access_token, event_id, calendar_id="primary"):
        if self.error:
            raise self.error
        data = self.events.get(event_id)
        return MeetingEvent(data, calendar_id=calendar_id) if data else None


class Runner:
    def __init__(self):
        self.error = None
        self.runs = 0

    async def run(self, prompt, assistant_id):
        self.runs += 1
        if self.error:
            raise self.error
        return "Open with the numbers."


@pytest.fixture
def fakes():
    cache = MemoryCacheStore()
    users = Records(ANA)
    companies = Records(ACME)
    access = AccessResolver(users, companies, cache)
    calendar = Calendar()
    runner = Runner()
    services = SimpleNamespace(
        settings=Settings(_env_file=None),
        access=access,
        insights=InsightService(access, calendar, runner, cache),
        users=users,
        companies=companies,
        calendar=calendar,
        runner=runner,
    )
    app.dependency_overrides[get_services] = lambda: services
    yield services
    app.dependency_overrides.clear()


@pytest.fixture
def client(fakes, apply_auth_override):
    apply_auth_override(app)
    return TestClient(app)


def as_user(email):
    app.dependency_overrides[current_user_email] = lambda: email


def test_homepage_for_registered_user(client):
    data = client.post("/addon/homepage").json()

    assert data["card"]["title"] == "Welcome to Voxerion"
    assert data["card"]["body_text"][0] == "Logged in as: a@acme.com"


def test_homepage_for_unregistered_user(client):
    as_user("x@nowhere.com")

    card = client.post("/addon/homepage").json()["card"]

    assert card["title"] == "🔒 Access Required"
    assert "x@nowhere.com" in card["body_text"][0]
    assert card["actions"][0]["url"] == "mailto:support@voxerion.com"


def test_requests_without_identity_token_are_rejected(fakes):
    response = TestClient(app).post("/addon/homepage")

    assert response.status_code in (401, 403)


def test_event_open_shows_meeting_card(client):
    response = client.post(
        "/addon/event-open",
        json={"event_id": "evt_1", "calendar_id": "primary", "access_token": "oauth-token"},
    )

    card = response.json()["card"]
    assert card["title"] == "Quarterly review"
    assert card["body_text"][0].startswith("This meeting starts in")
    assert card["actions"][0]["action"] == "/addon/insights"
    assert card["actions"][0]["parameters"] == {"event_id": "evt_1", "calendar_id": "primary"}


def test_event_open_without_event_is_new_event(client):
    card = client.post("/addon/event-open", json={}).json()["card"]

    assert card["body_text"] == ["New meeting being created"]


def test_event_open_unknown_event_is_new_event(client):
    card = client.post(
        "/addon/event-open", json={"event_id": "draft", "access_token": "oauth-token"}
    ).json()["card"]

    assert card["body_text"] == ["New meeting being created"]


def test_event_open_calendar_failure_offers_retry(client, fakes):
    fakes.calendar.error = GoogleCalendarError("Calendar authorization expired. Please reconnect.")

    card = client.post(
        "/addon/event-open", json={"event_id": "evt_1", "access_token": "oauth-token"}
    ).json()["card"]

    assert card["body_text"] == ["⚠️ Calendar authorization expired. Please reconnect."]
    assert card["actions"][0]["action"] == "/addon/event-open"


def test_insights_success(client, fakes):
    response = client.post(
        "/addon/insights", json={"event_id": "evt_1", "access_token": "oauth-token"}
    )

    data = response.json()
    assert data["notification"] == "Insights generated successfully!"
    assert data["card"]["subtitle"] == "Quarterly review"
    assert "Open with the numbers." in data["card"]["body_text"]
    assert [a["action"] for a in data["card"]["actions"]] == ["/addon/event-open", "/addon/copy"]

    client.post("/addon/insights", json={"event_id": "evt_1", "access_token": "oauth-token"})
    assert fakes.runner.runs == 1


def test_insights_timeout_renders_retry_card(client, fakes):
    fakes.runner.error = RunTimeoutError(7, "in_progress")

    data = client.post(
        "/addon/insights",
        json={"event_id": "evt_1", "calendar_id": "primary", "access_token": "oauth-token"},
    ).json()

    assert data["notification"] == "Error: Unable to generate insights"
    card = data["card"]
    assert card["body_text"] == [
        "⚠️ Error generating insights: Timeout after 7 attempts. Last status: in_progress"
    ]
    retry = card["actions"][0]
    assert retry["label"] == "Try Again"
    assert retry["action"] == "/addon/insights"
    assert retry["parameters"] == {"event_id": "evt_1", "calendar_id": "primary", "refresh": False}


def test_insights_for_unregistered_user(client, fakes):
    as_user("x@nowhere.com")

    card = client.post(
        "/addon/insights", json={"event_id": "evt_1", "access_token": "oauth-token"}
    ).json()["card"]

    assert card["title"] == "🔒 Access Required"
    assert fakes.runner.runs == 0


def test_insights_requires_event_and_token(client):
    assert client.post("/addon/insights", json={"event_id": "evt_1"}).status_code == 422


def test_copy_card(client):
    card = client.post(
        "/addon/copy", json={"text": "Open with the numbers.", "event_id": "evt_1"}
    ).json()["card"]

    assert card["body_text"][0] == "Open with the numbers."
    assert card["actions"][0]["parameters"] == {"event_id": "evt_1", "calendar_id": "primary"}


def test_access_refresh_bypasses_cache(client, fakes):
    assert client.post("/addon/access/refresh").json()["authorized"] is True

    fakes.companies.records[0] = {**ACME, "status": "suspended"}

    data = client.post("/addon/access/refresh").json()
    assert data == {"authorized": False, "company_id": None, "role": None, "status": None}


def test_register_known_domain(client, fakes):
    as_user("new@acme.com")

    data = client.post("/addon/register", json={"name": "Nova"}).json()

    assert data["notification"] == "Registration complete"
    assert data["card"]["title"] == "Welcome to Voxerion"
    assert fakes.users.records[-1]["email"] == "new@acme.com"


def test_register_unknown_domain(client):
    as_user("x@nowhere.com")

    data = client.post("/addon/register", json={}).json()

    assert data["card"]["title"] == "🔒 Access Required"
    assert data["notification"] is None
