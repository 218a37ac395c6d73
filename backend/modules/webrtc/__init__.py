"""WebRTC 클라이언트 모듈.

로컬 미디어 획득, 참가자별 P2P 연결 관리, 적응형 화질 제어, 릴레이 경로 감지,
시그널링 클라이언트, ICE 서버 목록 제공 기능을 제공합니다.

Classes:
    ConnectionOrchestrator: 참가자별 PeerLink 생성/협상/정리
    PeerLink: 원격 참가자 한 명과의 연결
    LocalMedia: 로컬 카메라/마이크 트랙
    ConstrainedVideoTrack: 해상도/fps 제약 적용 비디오 트랙
    MutableAudioTrack: 음소거 지원 마이크 트랙
    QualityController: 공용 품질 단계 제어
    RelayPathDetector: 릴레이 경유 감지
    SignalingClient: 재연결 지원 시그널링 클라이언트

Config:
    ice_config: ICE 서버 설정
    connection_config: WebRTC 연결 설정
    media_config: 캡처 장치 설정
"""

from .tracks import ConstrainedVideoTrack, MutableAudioTrack
from .errors import MediaAcquisitionError, MediaErrorReason, RoomFullError
from .quality import QualityTier, QUALITY_TIERS, QualityController
from .media import LocalMedia
from .relay import RelayPathDetector
from .orchestrator import ConnectionOrchestrator, PeerLink, PeerIntroduction, LinkState
from .signaling_client import SignalingClient
from .turn import fetch_turn_credentials, fetch_ice_servers, static_ice_servers
from .config import (
    ice_config,
    connection_config,
    media_config,
    ICEServerConfig,
    ConnectionConfig,
    MediaConfig,
)

__all__ = [
    # Classes
    "ConstrainedVideoTrack",
    "MutableAudioTrack",
    "MediaAcquisitionError",
    "MediaErrorReason",
    "RoomFullError",
    "QualityTier",
    "QUALITY_TIERS",
    "QualityController",
    "LocalMedia",
    "RelayPathDetector",
    "ConnectionOrchestrator",
    "PeerLink",
    "PeerIntroduction",
    "LinkState",
    "SignalingClient",
    # ICE servers
    "fetch_turn_credentials",
    "fetch_ice_servers",
    "static_ice_servers",
    # Config
    "ice_config",
    "connection_config",
    "media_config",
    "ICEServerConfig",
    "ConnectionConfig",
    "MediaConfig",
]
