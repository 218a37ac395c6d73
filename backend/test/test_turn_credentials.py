"""ICE 서버 목록 제공 테스트.

사용법:
    uv run pytest backend/test/test_turn_credentials.py
"""

import aiohttp
import pytest

from modules.webrtc import turn
from modules.webrtc.config import ICEServerConfig

GOOGLE_STUN = [
    {"urls": "stun:stun.l.google.com:19302"},
    {"urls": "stun:stun1.l.google.com:19302"},
]


class FakeResponse:
    def __init__(self, status=200, body=None):
        self.status = status
        self._body = body

    async def json(self):
        return self._body

    def raise_for_status(self):
        if self.status >= 400:
            raise aiohttp.ClientResponseError(None, (), status=self.status)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """aiohttp.ClientSession 대역."""

    requested = []

    def __init__(self, response=None, error=None):
        self._response = response
        self._error = error

    def __call__(self, *args, **kwargs):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def get(self, url):
        FakeSession.requested.append(url)
        if self._error is not None:
            raise self._error
        return self._response


@pytest.fixture
def unconfigured(monkeypatch):
    monkeypatch.setattr(turn, "ice_config", ICEServerConfig(
        TURN_SERVER_URL=None, TURN_USERNAME=None, TURN_CREDENTIAL=None,
        STUN_SERVER_URL=None, METERED_API_KEY=None, METERED_DOMAIN=None,
    ))


@pytest.fixture
def metered(monkeypatch):
    monkeypatch.setattr(turn, "ice_config", ICEServerConfig(
        TURN_SERVER_URL=None, TURN_USERNAME=None, TURN_CREDENTIAL=None,
        STUN_SERVER_URL=None, METERED_API_KEY="key123", METERED_DOMAIN="myapp",
    ))


async def test_without_service_returns_stun_only(unconfigured):
    assert await turn.fetch_turn_credentials() == GOOGLE_STUN


def test_static_servers_include_configured_turn(monkeypatch):
    monkeypatch.setattr(turn, "ice_config", ICEServerConfig(
        TURN_SERVER_URL="turn:turn.example.com:3478", TURN_USERNAME="u", TURN_CREDENTIAL="p",
        STUN_SERVER_URL="stun:stun.example.com:3478", METERED_API_KEY=None, METERED_DOMAIN=None,
    ))

    servers = turn.static_ice_servers()

    assert servers[0] == {"urls": "stun:stun.example.com:3478"}
    assert servers[1:3] == GOOGLE_STUN
    assert servers[3] == {"urls": "turn:turn.example.com:3478", "username": "u", "credential": "p"}


async def test_service_response_is_passed_through(metered, monkeypatch):
    servers = [
        {"urls": "stun:stun.relay.metered.ca:80"},
        {"urls": "turn:global.relay.metered.ca:80", "username": "abc", "credential": "xyz"},
    ]
    FakeSession.requested = []
    monkeypatch.setattr(aiohttp, "ClientSession", FakeSession(FakeResponse(200, servers)))

    assert await turn.fetch_turn_credentials() == servers
    assert FakeSession.requested == [
        "https://myapp.metered.live/api/v1/turn/credentials?apiKey=key123"
    ]


@pytest.mark.parametrize("session", [
    FakeSession(FakeResponse(500, {"error": "boom"})),
    FakeSession(FakeResponse(200, {"not": "a list"})),
    FakeSession(error=aiohttp.ClientConnectionError("refused")),
])
async def test_service_failure_falls_back(metered, monkeypatch, session):
    monkeypatch.setattr(aiohttp, "ClientSession", session)

    assert await turn.fetch_turn_credentials() == GOOGLE_STUN


async def test_client_fetch_falls_back_to_google_stun(monkeypatch):
    monkeypatch.setattr(aiohttp, "ClientSession", FakeSession(error=aiohttp.ClientConnectionError("down")))

    servers = await turn.fetch_ice_servers("http://localhost:10000")

    assert servers == [{"urls": "stun:stun.l.google.com:19302"}]


async def test_client_fetch_uses_server_list(monkeypatch):
    servers = [{"urls": "stun:stun.example.com:3478"}]
    FakeSession.requested = []
    monkeypatch.setattr(aiohttp, "ClientSession", FakeSession(FakeResponse(200, servers)))

    assert await turn.fetch_ice_servers("http://localhost:10000/") == servers
    assert FakeSession.requested == ["http://localhost:10000/api/turn-credentials"]


def test_build_rtc_configuration_skips_entries_without_urls():
    config = turn.build_rtc_configuration([
        {"urls": "stun:stun.l.google.com:19302"},
        {"urls": ["turn:a.example.com"], "username": "u", "credential": "p"},
        {"username": "orphan"},
    ])

    assert len(config.iceServers) == 2
    assert config.iceServers[1].username == "u"


def test_turn_credentials_endpoint(server, unconfigured):
    response = server.get("/api/turn-credentials")

    assert response.status_code == 200
    assert response.json() == GOOGLE_STUN
