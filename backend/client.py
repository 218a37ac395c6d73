"""P2P 화상 통화 참가자 클라이언트.

시그널링 서버에서 ICE 서버 목록을 받아오고, 로컬 카메라/마이크를 연 뒤
방에 입장하여 같은 방의 다른 참가자들과 P2P 연결을 맺습니다.

Usage:
    python client.py 4821
    python client.py https://example.com/room/4821 --server https://example.com
    python client.py                      # 새 방 생성 후 입장
    kill -USR1 <pid>                      # 두 번째 카메라로 전환 (ALT_VIDEO_DEVICE 설정 시)
    kill -USR2 <pid>                      # 음소거 전환

    터미널에서는 m(음소거) / v(카메라 끄기) / c(카메라 전환) / q(나가기) 입력 후 Enter.
"""

import asyncio
import argparse
import logging
import os
import signal
import sys
from typing import Optional

import aiohttp

from modules.signaling import extract_room_code
from modules.webrtc import (
    ConnectionOrchestrator,
    LocalMedia,
    MediaAcquisitionError,
    QUALITY_TIERS,
    RoomFullError,
    SignalingClient,
    connection_config,
    fetch_ice_servers,
)

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_SERVER = os.getenv("SIGNALING_SERVER_URL", "http://localhost:10000")


def signaling_url(base_url: str) -> str:
    """HTTP 서버 주소를 시그널링 WebSocket 주소로 변환합니다."""
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        return "wss://" + base[len("https://"):] + "/ws"
    if base.startswith("http://"):
        return "ws://" + base[len("http://"):] + "/ws"
    return base + "/ws"


async def create_remote_room(base_url: str) -> str:
    """서버에 새 방을 만들고 코드를 반환합니다."""
    async with aiohttp.ClientSession() as session:
        async with session.post(f"{base_url.rstrip('/')}/api/rooms") as response:
            response.raise_for_status()
            body = await response.json()
            return body["roomId"]


def handle_command(key: str, media: LocalMedia, orchestrator: ConnectionOrchestrator) -> bool:
    """키 입력 한 줄을 통화 제어로 처리합니다.

    m: 음소거 전환, v: 카메라 켜기/끄기, c: 카메라 전환, q: 나가기

    Returns:
        bool: 알려진 명령인지 여부
    """
    key = key.strip().lower()
    if key == "m":
        media.set_audio_enabled(not media.audio_enabled)
    elif key == "v":
        media.set_video_enabled(not media.video_enabled)
    elif key == "c":
        asyncio.ensure_future(orchestrator.switch_camera())
    elif key == "q":
        orchestrator.finished.set()
    else:
        return False
    return True


async def run_session(server: str, room: Optional[str], tier_index: int) -> int:
    """참가자 세션 하나를 실행합니다.

    Returns:
        int: 프로세스 종료 코드 (0 정상, 1 미디어 획득 실패, 2 방 정원 초과)
    """
    if room:
        room_code = extract_room_code(room)
        if room_code is None:
            logger.error(f"유효한 4자리 방 코드가 아닙니다: {room}")
            return 1
    else:
        room_code = await create_remote_room(server)
        logger.info(f"새 방 생성: {room_code}")

    ice_servers = await fetch_ice_servers(server)

    try:
        media = LocalMedia.acquire(QUALITY_TIERS[tier_index])
    except MediaAcquisitionError as e:
        logger.error(e.message)
        return 1

    signaling = SignalingClient(signaling_url(server), room_code, on_event=None)
    orchestrator = ConnectionOrchestrator(
        signaling, media, ice_servers, start_tier_index=tier_index
    )
    orchestrator.room_code = room_code
    signaling.on_event = orchestrator.handle_event
    signaling.on_lost = orchestrator.on_signaling_lost

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.finished.set)
        except (NotImplementedError, AttributeError):
            pass
    if media.has_alternate_camera and hasattr(signal, "SIGUSR1"):
        loop.add_signal_handler(
            signal.SIGUSR1, lambda: asyncio.ensure_future(orchestrator.switch_camera())
        )
    if hasattr(signal, "SIGUSR2"):
        loop.add_signal_handler(signal.SIGUSR2, handle_command, "m", media, orchestrator)
    if sys.stdin.isatty():
        loop.add_reader(
            sys.stdin, lambda: handle_command(sys.stdin.readline(), media, orchestrator)
        )

    async def report_stats():
        while True:
            await asyncio.sleep(connection_config.STATS_INTERVAL)
            summary = orchestrator.quality.describe()
            relay = " (relay)" if orchestrator.relay.is_relayed else ""
            logger.info(f"[Stats] 방 {room_code} 참가자 {orchestrator.participant_count}명 "
                        f"{summary}{relay}")

    logger.info(f"방 {room_code} 입장 중... ({server})")
    orchestrator.start()
    signaling_task = asyncio.create_task(signaling.run())
    stats_task = asyncio.create_task(report_stats())

    exit_code = 0
    try:
        await orchestrator.wait()
    except RoomFullError as e:
        logger.error(f"방 {e.room_code}이(가) 가득 찼습니다 (최대 4명). 다른 코드로 시도하세요.")
        exit_code = 2
    finally:
        stats_task.cancel()
        if sys.stdin.isatty():
            loop.remove_reader(sys.stdin)
        await orchestrator.leave()
        signaling_task.cancel()
        try:
            await signaling_task
        except asyncio.CancelledError:
            pass

    return exit_code


def main():
    parser = argparse.ArgumentParser(description="Join a 4-party P2P video room")
    parser.add_argument(
        "room",
        nargs="?",
        help="4-digit room code or a link containing it (omit to create a new room)"
    )
    parser.add_argument(
        "--server",
        default=DEFAULT_SERVER,
        help=f"Signaling server base URL (default: {DEFAULT_SERVER})"
    )
    parser.add_argument(
        "--tier",
        type=int,
        default=0,
        choices=range(len(QUALITY_TIERS)),
        help="Starting quality tier index (0 = " + QUALITY_TIERS[0].label + ")"
    )
    args = parser.parse_args()

    sys.exit(asyncio.run(run_session(args.server, args.room, args.tier)))


if __name__ == "__main__":
    main()
