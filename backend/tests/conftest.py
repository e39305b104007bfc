"""Shared test fixtures for backend tests.

Every test gets fresh stores wired to a manual clock. The ``client`` fixture
installs the hub built from those stores into the app, so HTTP and
websocket tests see the same state the fixtures expose.
"""
import pytest
from fastapi.testclient import TestClient

from groupchat.chat.hub import SessionHub, set_hub
from groupchat.chat.message_log import MessageLog
from groupchat.chat.pins import PinManager
from groupchat.config import BootstrapUser
from groupchat.groups.service import GroupRegistry
from groupchat.identity.service import IdentityStore
from groupchat.identity.tokens import TokenService
from groupchat.main import app
from groupchat.media.service import MediaStorageService

PASSWORDS = {
    "root": "root-pw",
    "alice": "alice-pw",
    "bob": "bob-pw",
    "carol": "carol-pw",
}


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def identity():
    """root is superAdmin, alice an admin, bob and carol members."""
    store = IdentityStore()
    store.bootstrap([
        BootstrapUser(username="root", password=PASSWORDS["root"], role="superAdmin"),
        BootstrapUser(username="alice", password=PASSWORDS["alice"], display_name="Alice", role="admin"),
        BootstrapUser(username="bob", password=PASSWORDS["bob"], display_name="Bob"),
        BootstrapUser(username="carol", password=PASSWORDS["carol"], display_name="Carol"),
    ])
    return store


@pytest.fixture
def groups(identity):
    """Registry holding the default ``general`` group with alice, bob and root.

    carol is deliberately left out so tests can exercise non-member paths.
    """
    registry = GroupRegistry(identity, default_max_members=10)
    registry.ensure_default_group(
        "general",
        "General Chat",
        "",
        [identity.lookup("root"), identity.lookup("alice"), identity.lookup("bob")],
    )
    return registry


@pytest.fixture
def messages(groups, clock):
    return MessageLog(groups, max_history=1000, clock=clock)


@pytest.fixture
def pins(messages, groups, clock):
    return PinManager(messages, groups, default_duration_days=1, max_duration_days=30, clock=clock)


@pytest.fixture
def tokens():
    return TokenService(secret_key="test-secret", expire_minutes=60)


@pytest.fixture
def hub(identity, groups, messages, pins, tokens):
    return SessionHub(identity, groups, messages, pins, tokens, join_history_limit=50)


@pytest.fixture
def token_for(identity, tokens):
    def _token(username: str) -> str:
        return tokens.issue(identity.lookup(username))
    return _token


@pytest.fixture
def auth_headers(token_for):
    def _headers(username: str) -> dict:
        return {"Authorization": f"Bearer {token_for(username)}"}
    return _headers


@pytest.fixture
def media_service(tmp_path):
    service = MediaStorageService(
        upload_dir=str(tmp_path / "uploads"),
        db_path=str(tmp_path / "media.duckdb"),
        max_size_bytes=1024,
    )
    yield service
    service.close()


@pytest.fixture
def client(hub, media_service):
    """TestClient running the app lifespan against the fixture hub."""
    set_hub(hub)
    MediaStorageService.set_instance(media_service)
    with TestClient(app) as test_client:
        yield test_client
    set_hub(None)
    MediaStorageService.reset_instance()
