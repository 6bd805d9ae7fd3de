import itertools
import json
import os
import sys
from collections import defaultdict
from pathlib import Path
from urllib.parse import parse_qs

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_adpilot.db")
os.environ.setdefault("CLERK_JWT_ISSUER", "https://clerk.test")
os.environ.setdefault("CLERK_JWKS_URL", "https://clerk.test/.well-known/jwks.json")
os.environ.setdefault("BACKEND_CORS_ORIGINS", '["http://localhost:5173"]')
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("AGENT_BASE_URL", "http://agents.test")

import httpx
import pytest

from adpilot.auth.dependencies import AuthContext, get_current_user
from adpilot.db.base import Base, SessionLocal, engine, init_db
from adpilot.db.deps import get_session
from adpilot.db.models import AutomationConfig, Business
from adpilot.main import app
from adpilot.services.meta_platform import MetaPlatformClient, get_meta_client
from adpilot.services.provisioning import LaunchDefaults

TEST_USER_ID = "user_test_1"

_COLLECTIONS = {"campaigns", "adsets", "adcreatives", "ads", "events"}
_ID_PREFIX = {"campaigns": "cmp", "adsets": "adset", "adcreatives": "creative", "ads": "ad"}


class FakeGraph:
    """In-memory Graph API: records every form post and answers by call ordinal per kind."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, str]]] = []
        self.rejections: dict[str, set[int]] = defaultdict(set)
        self.transport_errors: dict[str, set[int]] = defaultdict(set)
        self._counters: dict[str, itertools.count] = defaultdict(lambda: itertools.count(1))

    @staticmethod
    def _kind(path: str, form: dict[str, str]) -> str:
        tail = path.rstrip("/").rsplit("/", 1)[-1]
        if tail in _COLLECTIONS:
            return tail
        if "daily_budget" in form:
            return "budget"
        return "status"

    def handler(self, request: httpx.Request) -> httpx.Response:
        form = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
        kind = self._kind(request.url.path, form)
        ordinal = next(self._counters[kind])
        self.calls.append((kind, request.url.path, form))

        if ordinal in self.transport_errors[kind]:
            raise httpx.ConnectError("connection reset by peer", request=request)
        if ordinal in self.rejections[kind]:
            return httpx.Response(
                400,
                json={"error": {"message": f"{kind} rejected", "type": "OAuthException", "code": 100}},
            )
        if kind in _ID_PREFIX:
            return httpx.Response(200, json={"id": f"{_ID_PREFIX[kind]}_{ordinal}"})
        if kind == "events":
            return httpx.Response(200, json={"events_received": 1, "fbtrace_id": "trace"})
        return httpx.Response(200, json={"success": True})

    def of_kind(self, kind: str) -> list[tuple[str, dict[str, str]]]:
        return [(path, form) for k, path, form in self.calls if k == kind]

    def form(self, kind: str, index: int = 0) -> dict[str, str]:
        return self.of_kind(kind)[index][1]

    def json_param(self, kind: str, name: str, index: int = 0):
        return json.loads(self.form(kind, index)[name])


@pytest.fixture()
def db_session():
    Base.metadata.drop_all(bind=engine)
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def fake_graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture()
def meta_client(fake_graph) -> MetaPlatformClient:
    return MetaPlatformClient(
        api_version="v21.0",
        base_url="https://graph.test",
        transport=httpx.MockTransport(fake_graph.handler),
    )


@pytest.fixture()
def launch_defaults() -> LaunchDefaults:
    return LaunchDefaults()


@pytest.fixture()
def business(db_session) -> Business:
    row = Business(
        user_id=TEST_USER_ID,
        name="Harbour Plumbing",
        trade="Plumber",
        latitude=-33.8688,
        longitude=151.2093,
        country_code="AU",
        website_url="https://harbourplumbing.test/",
        facebook_access_token="EAAB-test-token",
        facebook_ad_account_id="123456",
        facebook_page_id="page_1",
        facebook_pixel_id="pixel_1",
    )
    db_session.add(row)
    db_session.commit()
    db_session.refresh(row)
    return row


@pytest.fixture()
def automation_config(db_session, business) -> AutomationConfig:
    config = AutomationConfig(
        business_id=business.id,
        enabled=True,
        frequency_overrides_hours={},
        disabled_agents=[],
    )
    db_session.add(config)
    db_session.commit()
    db_session.refresh(config)
    return config


@pytest.fixture()
def auth_context() -> AuthContext:
    return AuthContext(user_id=TEST_USER_ID)


@pytest.fixture()
def override_dependencies(db_session, auth_context, meta_client):
    def get_session_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_current_user] = lambda: auth_context
    app.dependency_overrides[get_meta_client] = lambda: meta_client
    try:
        yield
    finally:
        app.dependency_overrides.clear()
