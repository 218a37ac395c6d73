"""Health Check API 라우터.

서비스 상태 확인을 위한 엔드포인트를 제공합니다.
"""

from typing import Optional, TYPE_CHECKING

from fastapi import APIRouter

if TYPE_CHECKING:
    from modules.signaling import RoomRegistry, SessionGateway

router = APIRouter(prefix="/api/health", tags=["health"])

_registry: Optional["RoomRegistry"] = None
_gateway: Optional["SessionGateway"] = None


def init_health(registry: "RoomRegistry", gateway: "SessionGateway"):
    global _registry, _gateway
    _registry = registry
    _gateway = gateway


@router.get("")
async def health_check():
    """시그널링 서버 상태를 확인합니다.

    Returns:
        dict: 서비스 상태, 활성 룸 수, 연결 수
    """
    if _registry is None or _gateway is None:
        return {"status": "not_initialized", "rooms": 0, "connections": 0}

    return {
        "status": "ok",
        "rooms": _registry.room_count,
        "connections": _gateway.connection_count,
    }
