"""ICE 서버 목록 제공 모듈.

서버 측에서는 릴레이(TURN) 자격증명 서비스를 프록시하여 클라이언트에 ICE 서버
목록을 제공하고, 클라이언트 측에서는 시그널링 서버의 ``/api/turn-credentials``
에서 목록을 받아 RTCConfiguration으로 변환합니다.

자격증명 서비스가 설정되지 않았거나 실패하면 STUN 전용 목록으로 대체합니다.
"""

import logging
from typing import Any, Dict, List

import aiohttp
from aiortc import RTCConfiguration, RTCIceServer

from .config import ice_config

logger = logging.getLogger(__name__)

IceServer = Dict[str, Any]

CLIENT_FALLBACK_SERVERS: List[IceServer] = [{"urls": "stun:stun.l.google.com:19302"}]


def static_ice_servers() -> List[IceServer]:
    """환경변수로 설정된 STUN/TURN 서버 목록을 반환합니다.

    Returns:
        list: 커스텀 STUN(선택) + 기본 Google STUN + 고정 TURN(선택)
    """
    ice_servers: List[IceServer] = []

    if ice_config.STUN_SERVER_URL:
        ice_servers.append({"urls": ice_config.STUN_SERVER_URL})

    for stun_url in ice_config.DEFAULT_STUN_SERVERS:
        ice_servers.append({"urls": stun_url})

    if ice_config.has_turn_server:
        ice_servers.append({
            "urls": ice_config.TURN_SERVER_URL,
            "username": ice_config.TURN_USERNAME,
            "credential": ice_config.TURN_CREDENTIAL,
        })

    return ice_servers


async def fetch_turn_credentials() -> List[IceServer]:
    """릴레이 자격증명 서비스에서 ICE 서버 목록을 가져옵니다.

    Returns:
        list: 서비스가 돌려준 ICE 서버 목록. 서비스 미설정 또는 실패 시
              ``static_ice_servers()`` 결과
    """
    if not ice_config.has_credential_service:
        logger.info("[WebRTC] 릴레이 자격증명 서비스 미설정, 고정 ICE 서버 제공")
        return static_ice_servers()

    timeout = aiohttp.ClientTimeout(total=ice_config.CREDENTIALS_TIMEOUT)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(ice_config.credentials_url) as response:
                if response.status != 200:
                    raise RuntimeError(f"Metered API error: {response.status}")
                servers = await response.json()
    except Exception as e:
        logger.error(f"[WebRTC] TURN 자격증명 조회 실패: {e}")
        return static_ice_servers()

    if not isinstance(servers, list):
        logger.error(f"[WebRTC] TURN 자격증명 응답 형식 오류: {type(servers).__name__}")
        return static_ice_servers()

    logger.info(f"[WebRTC] TURN 자격증명 {len(servers)}개 수신")
    return servers


async def fetch_ice_servers(base_url: str) -> List[IceServer]:
    """시그널링 서버에서 ICE 서버 목록을 가져옵니다 (클라이언트용).

    Args:
        base_url: 시그널링 서버 HTTP 주소 (예: ``http://localhost:10000``)
    """
    url = f"{base_url.rstrip('/')}/api/turn-credentials"
    timeout = aiohttp.ClientTimeout(total=ice_config.CREDENTIALS_TIMEOUT)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as response:
                response.raise_for_status()
                servers = await response.json()
                logger.info(f"[WebRTC] ICE 서버 {len(servers)}개 수신")
                return servers
    except Exception as e:
        logger.warning(f"[WebRTC] ICE 서버 조회 실패, 기본 STUN 사용: {e}")
        return list(CLIENT_FALLBACK_SERVERS)


def build_rtc_configuration(ice_servers: List[IceServer]) -> RTCConfiguration:
    """ICE 서버 딕셔너리 목록을 aiortc RTCConfiguration으로 변환합니다."""
    servers = []
    for server in ice_servers:
        urls = server.get("urls")
        if not urls:
            continue
        servers.append(RTCIceServer(
            urls=urls,
            username=server.get("username"),
            credential=server.get("credential"),
        ))
    return RTCConfiguration(iceServers=servers)
