"""Backend modules package.

이 패키지는 4인 P2P 화상 통화 시스템의 핵심 모듈을 포함합니다.

Modules:
    signaling: 룸 레지스트리 및 WebSocket 시그널링 게이트웨이 (서버)
    webrtc: P2P 연결 관리, 적응형 화질, 릴레이 감지 (클라이언트)
    shared: 공용 API 응답 모델
"""

from .signaling import RoomRegistry, SessionGateway
from .shared import RoomCreatedResponse, RoomStatusResponse
from .webrtc import ConnectionOrchestrator, QualityController, RelayPathDetector

__all__ = [
    # Signaling
    "RoomRegistry",
    "SessionGateway",
    # Shared DTOs
    "RoomCreatedResponse",
    "RoomStatusResponse",
    # WebRTC
    "ConnectionOrchestrator",
    "QualityController",
    "RelayPathDetector",
]
