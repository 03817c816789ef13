import httpx
import pytest
from fastapi.testclient import TestClient

from codestakes.api import create_app
from codestakes.config import Settings
from codestakes.database import create_db_engine, create_session_factory, init_db
from codestakes.github import GitHubOAuthConfig, GitHubProvider


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite://",
        "client_url": "http://client.test",
        "server_url": "http://testserver",
        "session_secret": "test-secret",
        "github_client_id": None,
        "github_client_secret": None,
        "rate_limit_enabled": False,
        "debug_endpoint_enabled": None,
        "node_env": "development",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def engine():
    """Provide an isolated in-memory database for each test."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


class FakeGitHub:
    """Canned GitHub API responses served through httpx.MockTransport."""

    def __init__(self):
        self.calls = []
        self.user = {
            "id": 42,
            "login": "octocat",
            "name": "The Octocat",
            "avatar_url": "https://avatars.example.com/u/42",
        }
        self.emails = [
            {"email": "secondary@example.com", "primary": False},
            {"email": "octocat@example.com", "primary": True},
        ]
        self.token_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request.url.path)
        if request.url.path == "/login/oauth/access_token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "bad_verification_code"})
            return httpx.Response(200, json={"access_token": "gho_test", "token_type": "bearer"})
        if request.url.path == "/user":
            return httpx.Response(200, json=self.user)
        if request.url.path == "/user/emails":
            return httpx.Response(200, json=self.emails)
        return httpx.Response(404)


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def github_provider(fake_github):
    config = GitHubOAuthConfig(
        client_id="client-id",
        client_secret="client-secret",
        callback_url="http://testserver/api/auth/github/callback",
    )
    return GitHubProvider(config, transport=httpx.MockTransport(fake_github.handler))


@pytest.fixture
def client(settings, engine):
    app = create_app(settings=settings, engine=engine)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def github_client(settings, engine, github_provider):
    app = create_app(settings=settings, engine=engine, github_provider=github_provider)
    with TestClient(app) as test_client:
        yield test_client


def register(client, username="bob", email="bob@x.com", password="pw123456"):
    return client.post(
        "/api/auth/register",
        json={"username": username, "email": email, "password": password},
    )
