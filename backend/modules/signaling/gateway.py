"""세션 게이트웨이 모듈.

참가자별 장기 연결(WebSocket)을 룸 레지스트리에 바인딩하고, 같은 룸의
특정 대상 또는 룸 전체로 시그널링 메시지를 중계합니다.

게이트웨이는 전송 계층과 무관하게 동작합니다. 각 연결은 비동기 ``send``
함수와 함께 등록되며, FastAPI WebSocket 라우터(routes/signaling.py)가
이를 실제 소켓에 연결합니다.

Connection State Machine:
    UNBOUND --join(code)--> BOUND(code) --leave/disconnect--> UNBOUND

    - 다른 룸으로 이동할 때는 항상 leave 후 다시 join (룸 교체 없음)
    - 재연결은 새 연결 ID로 들어오는 새로운 join과 동일하게 처리

Relay:
    offer / answer / ice-candidate 메시지는 내용 검증 없이 대상 연결에
    그대로 전달하며, 보낸 쪽의 연결 ID를 ``sender``로 덧붙입니다.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from . import protocol
from .registry import AdmitResult, RoomRegistry

logger = logging.getLogger(__name__)

SendFunc = Callable[[Dict[str, Any]], Awaitable[None]]


class ConnectionState(Enum):
    """연결별 바인딩 상태."""

    UNBOUND = "unbound"
    BOUND = "bound"


@dataclass
class GatewayConnection:
    """게이트웨이에 등록된 연결.

    Attributes:
        identity (str): 연결 ID (전송 세션마다 새로 발급)
        send (SendFunc): 이 연결로 메시지를 보내는 비동기 함수
        state (ConnectionState): 바인딩 상태
        room_code (Optional[str]): BOUND 상태일 때 소속 룸 코드
    """
    identity: str
    send: SendFunc
    state: ConnectionState = ConnectionState.UNBOUND
    room_code: Optional[str] = None

    def bind(self, room_code: str) -> None:
        if self.state is not ConnectionState.UNBOUND:
            raise RuntimeError(f"connection {self.identity[:8]} is already bound to room {self.room_code}")
        self.state = ConnectionState.BOUND
        self.room_code = room_code

    def unbind(self) -> Optional[str]:
        room_code = self.room_code
        self.state = ConnectionState.UNBOUND
        self.room_code = None
        return room_code


class SessionGateway:
    """연결-룸 바인딩과 시그널링 중계를 담당하는 게이트웨이.

    Attributes:
        registry (RoomRegistry): 공유 룸 레지스트리
        connections (Dict[str, GatewayConnection]): 연결 ID → 연결

    Examples:
        >>> gateway = SessionGateway(RoomRegistry())
        >>> await gateway.connect("conn-1", websocket.send_json)
        >>> await gateway.handle("conn-1", {"type": "join-room", "data": {"roomId": "4821"}})
        >>> await gateway.disconnect("conn-1")
    """

    def __init__(self, registry: RoomRegistry):
        self.registry = registry
        self.connections: Dict[str, GatewayConnection] = {}

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    async def connect(self, identity: str, send: SendFunc) -> GatewayConnection:
        """새 연결을 등록하고 연결 ID를 알려줍니다."""
        conn = GatewayConnection(identity=identity, send=send)
        self.connections[identity] = conn
        logger.info(f"[Signaling] 연결 {identity[:8]} 등록")
        await self._send(identity, protocol.CONNECTED, {"socketId": identity})
        return conn

    async def disconnect(self, identity: str) -> None:
        """연결 종료를 처리합니다. 바인딩된 룸이 있으면 퇴장 처리합니다."""
        conn = self.connections.get(identity)
        if conn is None:
            return
        await self.leave(conn)
        self.connections.pop(identity, None)
        logger.info(f"[Signaling] 연결 {identity[:8]} 해제")

    async def handle(self, identity: str, message: Any) -> None:
        """수신한 메시지 하나를 끝까지 처리합니다.

        Args:
            identity: 보낸 연결 ID
            message: 디코딩된 JSON 메시지
        """
        conn = self.connections.get(identity)
        if conn is None:
            logger.warning(f"[Signaling] 등록되지 않은 연결 {identity[:8]}의 메시지 무시")
            return

        try:
            envelope = protocol.SignalingMessage.model_validate(message)
        except ValidationError:
            await self._send(identity, protocol.ERROR, {"message": "Malformed signaling message"})
            return

        event, data = envelope.type, envelope.data

        if event == protocol.JOIN_ROOM:
            await self.join(conn, data.get("roomId"))
        elif event in protocol.RELAY_EVENTS:
            await self.relay(conn, event, data)
        elif event == protocol.LEAVE_ROOM:
            await self.leave(conn)
        else:
            logger.warning(f"[Signaling] 알 수 없는 메시지 타입: {event}")
            await self._send(identity, protocol.ERROR, {"message": f"Unknown message type: {event}"})

    async def join(self, conn: GatewayConnection, raw_room_id: Any) -> bool:
        """연결을 룸에 바인딩합니다.

        기존 룸이 있으면 먼저 퇴장한 뒤 새 룸 입장을 시도합니다. 정원이
        찼으면 ``room-full``을 보내고 바인딩하지 않습니다. 성공 시 입장자에게는
        기존 참가자 목록을, 기존 참가자들에게는 새 참가자 도착을 알립니다.

        Returns:
            bool: 입장 성공 여부
        """
        room_code = protocol.extract_room_code(raw_room_id)
        if room_code is None:
            await self._send(conn.identity, protocol.ERROR, {"message": "Invalid room code"})
            return False

        if conn.state is ConnectionState.BOUND:
            await self.leave(conn)

        result = self.registry.admit(room_code, conn.identity)
        if result is AdmitResult.ROOM_FULL:
            await self._send(conn.identity, protocol.ROOM_FULL, {})
            return False

        conn.bind(room_code)
        others = [pid for pid in self.registry.participants(room_code) if pid != conn.identity]

        await self._send(conn.identity, protocol.ROOM_JOINED, {"participants": others})
        for peer_id in others:
            await self._send(peer_id, protocol.PARTICIPANT_JOINED, {"socketId": conn.identity})
        return True

    async def relay(self, conn: GatewayConnection, event: str, data: Dict[str, Any]) -> None:
        """offer/answer/ice-candidate를 대상 연결로 그대로 전달합니다."""
        target = data.get("target")
        if not target or target not in self.connections:
            logger.debug(f"[Signaling] {event} 대상 없음: {str(target)[:8]} (보낸 쪽 {conn.identity[:8]})")
            return

        payload = {key: value for key, value in data.items() if key != "target"}
        payload["sender"] = conn.identity
        await self._send(target, event, payload)

    async def leave(self, conn: GatewayConnection) -> None:
        """연결을 룸에서 해제하고 남은 참가자들에게 알립니다."""
        if conn.state is not ConnectionState.BOUND:
            return

        room_code = conn.unbind()
        self.registry.remove(room_code, conn.identity)
        for peer_id in self.registry.participants(room_code):
            await self._send(peer_id, protocol.PARTICIPANT_LEFT, {"socketId": conn.identity})

    async def _send(self, identity: str, event: str, data: Dict[str, Any]) -> None:
        conn = self.connections.get(identity)
        if conn is None:
            return
        try:
            await conn.send(protocol.make_message(event, data))
        except Exception as e:
            # 끊긴 연결은 수신 루프 종료 시 disconnect()로 정리됨
            logger.warning(f"[Signaling] {identity[:8]}에 {event} 전송 실패: {e}")
