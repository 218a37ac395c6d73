"""시그널링 프로토콜 정의.

WebSocket 시그널링 채널에서 주고받는 이벤트 이름과 메시지 봉투(envelope),
룸 코드 파싱 유틸리티를 정의합니다.

Message Envelope:
    모든 메시지는 ``{"type": <이벤트명>, "data": {...}}`` 형태의 JSON 객체입니다.

Client → Server:
    - join-room {roomId}
    - offer {target, sdp}
    - answer {target, sdp}
    - ice-candidate {target, candidate}
    - leave-room {}

Server → Client:
    - connected {socketId}
    - room-joined {participants}
    - participant-joined {socketId}
    - participant-left {socketId}
    - offer {sender, sdp} / answer {sender, sdp} / ice-candidate {sender, candidate}
    - room-full {}
    - error {message}
"""

import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

# Client -> Server
JOIN_ROOM = "join-room"
LEAVE_ROOM = "leave-room"

# Targeted relay (양방향 공통)
OFFER = "offer"
ANSWER = "answer"
ICE_CANDIDATE = "ice-candidate"
RELAY_EVENTS = (OFFER, ANSWER, ICE_CANDIDATE)

# Server -> Client
CONNECTED = "connected"
ROOM_JOINED = "room-joined"
PARTICIPANT_JOINED = "participant-joined"
PARTICIPANT_LEFT = "participant-left"
ROOM_FULL = "room-full"
ERROR = "error"

# 마지막 4자리 숫자 (뒤에 숫자가 더 붙지 않은 것)
_ROOM_CODE_PATTERN = re.compile(r"(\d{4})(?!\d)")


class SignalingMessage(BaseModel):
    """시그널링 메시지 봉투."""

    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


def make_message(event: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """전송용 메시지 딕셔너리를 생성합니다."""
    return {"type": event, "data": data or {}}


def extract_room_code(text: Optional[str]) -> Optional[str]:
    """입력 문자열에서 룸 코드를 추출합니다.

    링크 붙여넣기 편의를 위해 문자열 안의 마지막 4자리 숫자 묶음을
    룸 코드로 사용합니다. 바로 뒤에 숫자가 이어지는 묶음은 제외됩니다.

    Args:
        text: 사용자가 입력하거나 붙여넣은 문자열 (URL 포함 가능)

    Returns:
        Optional[str]: 4자리 룸 코드. 찾지 못하면 None

    Examples:
        >>> extract_room_code("https://example.com/4821")
        '4821'
        >>> extract_room_code(" 12 ")
        >>> extract_room_code("room 1234 then 5678")
        '5678'
    """
    if text is None:
        return None
    trimmed = str(text).strip()
    if not trimmed:
        return None
    matches = _ROOM_CODE_PATTERN.findall(trimmed)
    if not matches:
        return None
    return matches[-1]
