"""시그널링 모듈.

룸 레지스트리와 WebSocket 세션 게이트웨이를 제공합니다.

Classes:
    RoomRegistry: 룸 코드 → 참가자 집합 관리
    SessionGateway: 연결-룸 바인딩 및 시그널링 메시지 중계
    RoomInfo: 룸 상태 스냅샷
    AdmitResult: 입장 결과

Config:
    room_config: 룸 정원/정리 주기 설정
"""

from .config import room_config, RoomConfig
from .registry import RoomRegistry, RoomInfo, AdmitResult
from .gateway import SessionGateway, GatewayConnection, ConnectionState
from .protocol import extract_room_code, SignalingMessage

__all__ = [
    # Classes
    "RoomRegistry",
    "RoomInfo",
    "AdmitResult",
    "SessionGateway",
    "GatewayConnection",
    "ConnectionState",
    "SignalingMessage",
    "extract_room_code",
    # Config
    "room_config",
    "RoomConfig",
]
