"""시그널링 모듈 설정.

룸 정원, 룸 코드 형식, 빈 룸 정리 주기 등 룸 레지스트리 관련 상수와
환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# 룸 설정
# ============================================================

@dataclass(frozen=True)
class RoomConfig:
    """룸 레지스트리 설정."""

    # 룸 최대 참가자 수 (P2P 메시 기준)
    MAX_PARTICIPANTS: int = int(os.getenv("MAX_PARTICIPANTS", "4"))

    # 룸 코드 자릿수 (숫자만 사용 - 모바일 숫자 키패드)
    ROOM_CODE_LENGTH: int = 4

    # 룸 코드 충돌 시 재시도 횟수
    CODE_GENERATION_ATTEMPTS: int = int(os.getenv("CODE_GENERATION_ATTEMPTS", "20"))

    # 마지막 참가자 퇴장 후 룸 삭제까지 대기 시간 (초)
    EMPTY_ROOM_GRACE_SECONDS: float = float(os.getenv("EMPTY_ROOM_GRACE_SECONDS", "300"))

    # 빈 룸을 오래된 룸으로 간주하는 시간 (초)
    STALE_ROOM_SECONDS: float = float(os.getenv("STALE_ROOM_SECONDS", "3600"))

    # 오래된 룸 정리 주기 (초)
    SWEEP_INTERVAL_SECONDS: float = float(os.getenv("SWEEP_INTERVAL_SECONDS", "1800"))


# ============================================================
# 싱글톤 인스턴스
# ============================================================

room_config = RoomConfig()

logger.info(f"[Room Config] 최대 참가자: {room_config.MAX_PARTICIPANTS}, "
            f"빈 룸 유예: {room_config.EMPTY_ROOM_GRACE_SECONDS}s, "
            f"정리 주기: {room_config.SWEEP_INTERVAL_SECONDS}s")
