"""WebRTC 시그널링 WebSocket 라우터.

SessionGateway를 FastAPI WebSocket(``/ws``)에 연결합니다. 룸 참가/퇴장과
offer/answer/ICE candidate 중계는 게이트웨이가 담당합니다.
"""

import logging
import uuid
from typing import Optional, TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from modules.signaling import protocol

if TYPE_CHECKING:
    from modules.signaling import SessionGateway

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 게이트웨이 참조 (app.py에서 설정됨)
_gateway: Optional["SessionGateway"] = None


def init_gateway(gateway: "SessionGateway"):
    """게이트웨이 인스턴스를 초기화합니다.

    app.py에서 호출하여 글로벌 게이트웨이 참조를 설정합니다.

    Args:
        gateway: SessionGateway 인스턴스
    """
    global _gateway
    _gateway = gateway
    logger.info("시그널링 라우터 게이트웨이 초기화 완료")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebRTC 시그널링을 위한 WebSocket 엔드포인트.

    처리하는 메시지 타입:
        - join-room: 룸 참가 (roomId)
        - offer / answer / ice-candidate: 대상 참가자에게 중계 (target)
        - leave-room: 현재 룸에서 퇴장

    연결마다 새 연결 ID를 발급하며, 재연결한 클라이언트도 새 ID로 처리됩니다.
    """
    if _gateway is None:
        logger.error("게이트웨이가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()

    peer_id = str(uuid.uuid4())
    logger.info(f"피어 {peer_id} 연결됨")
    await _gateway.connect(peer_id, websocket.send_json)

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                # JSON이 아닌 메시지 - 연결은 유지
                await websocket.send_json(protocol.make_message(
                    protocol.ERROR, {"message": "Malformed signaling message"}
                ))
                continue

            await _gateway.handle(peer_id, message)

    except WebSocketDisconnect:
        logger.info(f"피어 {peer_id} 연결 해제")
    except Exception as e:
        logger.error(f"피어 {peer_id} WebSocket 오류: {e}", exc_info=True)
    finally:
        await _gateway.disconnect(peer_id)
