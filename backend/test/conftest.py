"""공용 pytest fixture.

사용법:
    uv run pytest
"""

import asyncio
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

import app as server_app
from modules.signaling import RoomRegistry, SessionGateway
from routes import init_health, init_rooms_registry, init_signaling_gateway


class Recorder:
    """게이트웨이 send 함수 대역. 보낸 메시지를 순서대로 기록합니다."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    async def __call__(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)

    def events(self, event: str) -> List[Dict[str, Any]]:
        return [m["data"] for m in self.messages if m["type"] == event]

    @property
    def types(self) -> List[str]:
        return [m["type"] for m in self.messages]


@pytest.fixture
def registry():
    return RoomRegistry(grace_period=0.05, stale_after=10, sweep_interval=60)


@pytest.fixture
def gateway(registry):
    return SessionGateway(registry)


@pytest.fixture
def recorder_factory():
    return Recorder


@pytest.fixture
def server():
    """새 레지스트리/게이트웨이를 연결한 TestClient."""
    registry = RoomRegistry()
    gateway = SessionGateway(registry)
    init_health(registry, gateway)
    init_rooms_registry(registry)
    init_signaling_gateway(gateway)

    with TestClient(server_app.app) as client:
        client.registry = registry
        client.gateway = gateway
        yield client

    init_health(server_app.room_registry, server_app.session_gateway)
    init_rooms_registry(server_app.room_registry)
    init_signaling_gateway(server_app.session_gateway)


async def settle(times: int = 5) -> None:
    """대기 중인 태스크가 한 단계씩 진행되도록 이벤트 루프를 양보합니다."""
    for _ in range(times):
        await asyncio.sleep(0)
