"""Lightweight shared DTOs for the room REST API."""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class RoomCreatedResponse(BaseModel):
    """Response body of room creation."""

    roomId: str = Field(description="4자리 숫자 룸 코드")


class RoomStatusResponse(BaseModel):
    """Occupancy snapshot of a room."""

    roomId: str = Field(description="4자리 숫자 룸 코드")
    participants: int = Field(description="현재 참가자 수")
    maxParticipants: int = Field(description="최대 참가자 수")
    isFull: bool = Field(description="정원 도달 여부")


class IceServerDescriptor(BaseModel):
    """ICE server entry handed to clients (RTCIceServer shape)."""

    model_config = ConfigDict(extra="allow")

    urls: Union[str, List[str]]
    username: Optional[str] = None
    credential: Optional[str] = None
