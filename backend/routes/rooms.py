"""룸 REST API 라우터.

룸 생성, 룸 상태 조회, ICE 서버(TURN 자격증명) 목록 조회 엔드포인트를 제공합니다.
"""

import logging
from typing import List, Optional, TYPE_CHECKING

from fastapi import APIRouter, HTTPException

from modules.shared import IceServerDescriptor, RoomCreatedResponse, RoomStatusResponse
from modules.signaling import extract_room_code
from modules.webrtc.turn import fetch_turn_credentials

if TYPE_CHECKING:
    from modules.signaling import RoomRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["rooms"])

# 글로벌 레지스트리 참조 (app.py에서 설정됨)
_registry: Optional["RoomRegistry"] = None


def init_registry(registry: "RoomRegistry"):
    """룸 레지스트리 인스턴스를 설정합니다.

    Args:
        registry: RoomRegistry 인스턴스
    """
    global _registry
    _registry = registry
    logger.info("룸 라우터 레지스트리 초기화 완료")


def _get_registry() -> "RoomRegistry":
    if _registry is None:
        raise HTTPException(status_code=503, detail="Room registry not initialized")
    return _registry


@router.post("/rooms", response_model=RoomCreatedResponse)
async def create_room():
    """새 룸을 생성합니다.

    Returns:
        RoomCreatedResponse: 발급된 4자리 룸 코드
    """
    code = _get_registry().create_room()
    return RoomCreatedResponse(roomId=code)


@router.get("/rooms/{room_id}", response_model=RoomStatusResponse)
async def get_room_status(room_id: str):
    """룸 참가 현황을 조회합니다.

    Args:
        room_id: 룸 코드 (링크 등 4자리 숫자가 포함된 문자열 허용)

    Raises:
        HTTPException: 룸이 없으면 404
    """
    code = extract_room_code(room_id)
    room = _get_registry().get_room(code) if code else None
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")

    return RoomStatusResponse(
        roomId=room.code,
        participants=room.participant_count,
        maxParticipants=room.max_participants,
        isFull=room.is_full,
    )


@router.get(
    "/turn-credentials",
    response_model=List[IceServerDescriptor],
    response_model_exclude_none=True,
)
async def get_turn_credentials():
    """클라이언트용 ICE 서버 목록을 반환합니다.

    릴레이 자격증명 서비스가 설정되지 않았거나 실패하면 STUN 위주의 고정 목록을
    반환합니다.
    """
    return await fetch_turn_credentials()
