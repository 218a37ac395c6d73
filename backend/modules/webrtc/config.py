"""WebRTC 모듈 설정.

TURN/STUN 서버, 릴레이 자격증명 서비스, 연결 복구/통계 주기, 캡처 장치 등
WebRTC 관련 상수와 환경변수 기반 설정.
"""

import os
import sys
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정."""

    # 고정 TURN 서버
    TURN_SERVER_URL: Optional[str] = os.getenv("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN 서버
    STUN_SERVER_URL: Optional[str] = os.getenv("STUN_SERVER_URL")

    # Metered 릴레이 자격증명 서비스
    METERED_API_KEY: Optional[str] = os.getenv("METERED_API_KEY")
    METERED_DOMAIN: Optional[str] = os.getenv("METERED_DOMAIN")
    CREDENTIALS_TIMEOUT: float = float(os.getenv("TURN_CREDENTIALS_TIMEOUT", "5"))

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    )

    @property
    def has_turn_server(self) -> bool:
        """고정 TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    @property
    def has_credential_service(self) -> bool:
        """릴레이 자격증명 서비스 설정 여부."""
        return bool(self.METERED_API_KEY and self.METERED_DOMAIN)

    @property
    def credentials_url(self) -> str:
        return (f"https://{self.METERED_DOMAIN}.metered.live/api/v1/turn/credentials"
                f"?apiKey={self.METERED_API_KEY}")


# ============================================================
# WebRTC 연결 설정
# ============================================================

@dataclass(frozen=True)
class ConnectionConfig:
    """WebRTC 연결 관련 설정."""

    # 송신 통계 샘플링 주기 (초)
    STATS_INTERVAL: float = 2.0

    # 릴레이 경로 검사 주기 (초)
    RELAY_CHECK_INTERVAL: float = 5.0

    # ICE 재시작 두 번째 시도까지 대기 시간 (초)
    ICE_RESTART_DELAY: float = 3.0

    # 링크당 최대 ICE 재시작 횟수
    MAX_ICE_RESTARTS: int = 2

    # 시그널링 재연결 백오프 (초)
    RECONNECT_MIN_DELAY: float = 1.0
    RECONNECT_MAX_DELAY: float = 10.0

    # 시그널링 keepalive (초)
    PING_INTERVAL: float = 10.0
    PING_TIMEOUT: float = 5.0


# ============================================================
# 캡처 장치 설정
# ============================================================

def _default_capture_formats() -> tuple:
    if sys.platform == "darwin":
        return "avfoundation", "avfoundation"
    if sys.platform.startswith("win"):
        return "dshow", "dshow"
    return "v4l2", "pulse"


@dataclass(frozen=True)
class MediaConfig:
    """로컬 캡처 장치 설정."""

    VIDEO_DEVICE: str = os.getenv("VIDEO_DEVICE", "/dev/video0")

    # 전환 가능한 두 번째 카메라 (없으면 카메라 전환 비활성화)
    ALT_VIDEO_DEVICE: Optional[str] = os.getenv("ALT_VIDEO_DEVICE")

    AUDIO_DEVICE: Optional[str] = os.getenv("AUDIO_DEVICE", "default")

    VIDEO_FORMAT: str = os.getenv("VIDEO_FORMAT", _default_capture_formats()[0])
    AUDIO_FORMAT: str = os.getenv("AUDIO_FORMAT", _default_capture_formats()[1])


# ============================================================
# 싱글톤 인스턴스
# ============================================================

ice_config = ICEServerConfig()
connection_config = ConnectionConfig()
media_config = MediaConfig()


# ============================================================
# 설정 로드 확인 로그
# ============================================================

logger.info(f"[WebRTC Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(f"[WebRTC Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
logger.info(f"[WebRTC Config] 릴레이 자격증명 서비스: {ice_config.has_credential_service}")
if ice_config.STUN_SERVER_URL:
    logger.info(f"[WebRTC Config] STUN URL: {ice_config.STUN_SERVER_URL}")
else:
    logger.info(f"[WebRTC Config] STUN URL: 기본 Google STUN 사용")
