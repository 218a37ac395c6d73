"""시그널링 WebSocket 클라이언트.

시그널링 서버(``/ws``)에 연결하여 이벤트를 주고받고, 연결이 끊기면 지수
백오프로 재연결합니다. 연결(재연결 포함)될 때마다 마지막으로 참가하려던 방에
``join-room``을 다시 보냅니다. 서버는 이를 새 식별자의 새 입장으로 처리하므로
방 멤버십은 재개되지 않고 새로 맺어집니다.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets

from modules.signaling import protocol

from .config import ConnectionConfig, connection_config

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]


class SignalingClient:
    """재연결을 지원하는 시그널링 클라이언트.

    Args:
        url (str): 시그널링 WebSocket 주소 (예: ``ws://localhost:10000/ws``)
        room_code (str): 입장할 4자리 방 코드
        on_event: 서버 이벤트 처리 코루틴 ``(event, data)``
        on_lost: 연결이 끊겼을 때 호출되는 코루틴 (선택)
        config (ConnectionConfig): 재연결/keepalive 설정

    Examples:
        >>> client = SignalingClient("ws://localhost:10000/ws", "4821", orchestrator.handle_event)
        >>> task = asyncio.create_task(client.run())
        >>> await client.send("offer", {"target": peer_id, "sdp": sdp})
    """

    def __init__(
        self,
        url: str,
        room_code: str,
        on_event: EventHandler,
        on_lost: Optional[Callable[[], Awaitable[None]]] = None,
        config: ConnectionConfig = connection_config,
    ):
        self.url = url
        self.room_code = room_code
        self.on_event = on_event
        self.on_lost = on_lost
        self.config = config

        self._ws = None
        self._closing = False
        self.connected = asyncio.Event()

    async def run(self) -> None:
        """연결 유지 루프. ``close()``가 호출될 때까지 재연결을 반복합니다."""
        delay = self.config.RECONNECT_MIN_DELAY
        while not self._closing:
            try:
                async with websockets.connect(
                    self.url,
                    ping_interval=self.config.PING_INTERVAL,
                    ping_timeout=self.config.PING_TIMEOUT,
                ) as ws:
                    self._ws = ws
                    self.connected.set()
                    delay = self.config.RECONNECT_MIN_DELAY
                    logger.info(f"[Signaling] 연결됨: {self.url}")

                    await self.send(protocol.JOIN_ROOM, {"roomId": self.room_code})
                    await self._receive_loop(ws)
            except (OSError, websockets.exceptions.WebSocketException) as e:
                logger.warning(f"[Signaling] 연결 오류: {e}")
            finally:
                was_connected = self._ws is not None
                self._ws = None
                self.connected.clear()

            if self._closing:
                break
            if was_connected and self.on_lost:
                await self.on_lost()

            logger.info(f"[Signaling] {delay:.0f}초 후 재연결")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.config.RECONNECT_MAX_DELAY)

    async def send(self, event: str, data: Dict[str, Any]) -> None:
        if self._ws is None:
            raise ConnectionError("signaling channel is not connected")
        await self._ws.send(json.dumps(protocol.make_message(event, data)))

    async def close(self) -> None:
        self._closing = True
        if self._ws is not None:
            await self._ws.close()

    async def _receive_loop(self, ws) -> None:
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                    event = message["type"]
                    data = message.get("data") or {}
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"[Signaling] 잘못된 메시지 무시: {e}")
                    continue
                try:
                    await self.on_event(event, data)
                except Exception as e:
                    logger.error(f"[Signaling] {event} 처리 실패: {e}", exc_info=True)
        except websockets.exceptions.ConnectionClosed as e:
            if not self._closing:
                logger.warning(f"[Signaling] 연결 끊김: {e}")
