"""WebRTC 클라이언트 예외 정의."""

from enum import Enum


class MediaErrorReason(Enum):
    """캡처 장치 획득 실패 원인."""

    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    DEVICE_BUSY = "device_busy"
    OTHER = "other"


_REASON_MESSAGES = {
    MediaErrorReason.PERMISSION_DENIED: "Camera/microphone permission denied. Please allow access and reload.",
    MediaErrorReason.NOT_FOUND: "No camera or microphone found on this device.",
    MediaErrorReason.DEVICE_BUSY: "Camera or microphone is already in use by another app.",
}


class MediaAcquisitionError(Exception):
    """캡처 장치(카메라/마이크)를 열 수 없을 때 발생.

    Attributes:
        reason (MediaErrorReason): 실패 원인 분류
        detail (str): 원본 오류 메시지
    """

    def __init__(self, reason: MediaErrorReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(self.message)

    @property
    def message(self) -> str:
        """사용자에게 보여줄 메시지."""
        return _REASON_MESSAGES.get(self.reason, f"Could not access media: {self.detail}")


class RoomFullError(Exception):
    """입장하려는 룸의 정원이 찼을 때 발생."""

    def __init__(self, room_code: str):
        self.room_code = room_code
        super().__init__(f"Room {room_code} is full")
