"""P2P 연결 오케스트레이터 모듈.

로컬 참가자 한 명의 관점에서 같은 방의 다른 참가자마다 독립적인
RTCPeerConnection(PeerLink)을 만들고, 시그널링 서버가 중계하는
offer/answer/ICE candidate 교환을 통해 연결을 구동합니다.

Link Lifecycle:
    CREATED → NEGOTIATING → CONNECTED ─┐
                  ↑                    │ ICE failed / disconnected
                  └──── ICE 재시작 ─────┘ (최대 2회, 이후 FAILED)
    모든 상태 → CLOSED (참가자 퇴장, 시그널링 끊김, leave)

Negotiation Direction:
    - room-joined 로 알게 된 기존 참가자 → 이쪽이 offer 생성 (initiator)
    - participant-joined 로 알게 된 신규 참가자 → 상대의 offer 대기

Note:
    링크마다 inbox 큐와 worker 태스크를 두어 같은 피어 쌍의 메시지는 도착 순서대로
    처리하고, 서로 다른 피어의 협상은 독립적으로 진행됩니다.

See Also:
    quality.py: 공용 품질 단계 제어
    relay.py: 릴레이 경로 감지
    signaling_client.py: 시그널링 WebSocket 클라이언트
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from aiortc import MediaStreamTrack, RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaBlackhole
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from modules.signaling import protocol

from .config import ConnectionConfig, connection_config
from .errors import MediaAcquisitionError, RoomFullError
from .media import LocalMedia
from .quality import QUALITY_TIERS, QualityController, QualityTier
from .relay import RelayPathDetector
from .stats import (
    OutboundVideoSample,
    bitrate_between,
    candidate_pair_reports,
    read_outbound_video,
)
from .turn import IceServer, build_rtc_configuration

logger = logging.getLogger(__name__)

# inbox 전용 내부 명령 (offer 생성)
_NEGOTIATE = "negotiate"


class LinkState(Enum):
    CREATED = "created"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass(frozen=True)
class PeerIntroduction:
    """새 피어 소개 이벤트.

    Attributes:
        peer_id (str): 상대 참가자 식별자
        initiator (bool): 이쪽이 offer를 만들어야 하면 True
    """
    peer_id: str
    initiator: bool


class PeerLink:
    """원격 참가자 한 명과의 P2P 연결.

    Attributes:
        peer_id (str): 상대 참가자 식별자
        pc (RTCPeerConnection): peer connection 핸들
        initiator (bool): offer 생성 측 여부
        state (LinkState): 링크 상태
        remote_tracks (List[MediaStreamTrack]): 수신한 원격 트랙
        last_sample (Optional[OutboundVideoSample]): 직전 송신 통계 (비트레이트 계산용)
        is_relay (bool): 릴레이 경유 여부
        restart_attempts (int): 현재 장애 구간의 ICE 재시작 횟수
        max_bitrate (Optional[int]): 송신 비디오 비트레이트 상한
        local_tracks (List[MediaStreamTrack]): 이 링크 전용 로컬 트랙 구독
    """

    def __init__(
        self,
        peer_id: str,
        pc: RTCPeerConnection,
        initiator: bool,
        video_meter: Callable[[], Any] = lambda: None,
        sink: Any = None,
    ):
        self.peer_id = peer_id
        self.pc = pc
        self.initiator = initiator
        self.state = LinkState.CREATED
        self.remote_tracks: List[MediaStreamTrack] = []
        self.last_sample: Optional[OutboundVideoSample] = None
        self.is_relay = False
        self.restart_attempts = 0
        self.max_bitrate: Optional[int] = None
        self.local_tracks: List[MediaStreamTrack] = []

        self.inbox: asyncio.Queue = asyncio.Queue()
        self.pending_candidates: list = []
        self.worker: Optional[asyncio.Task] = None
        self.restart_timer: Optional[asyncio.TimerHandle] = None
        self.sink = sink if sink is not None else MediaBlackhole()
        self._video_meter = video_meter
        self._cap_unreachable_logged = False

    @property
    def closed(self) -> bool:
        return self.state is LinkState.CLOSED

    def video_senders(self) -> list:
        return [
            sender for sender in self.pc.getSenders()
            if sender.track is not None and sender.track.kind == "video"
        ]

    async def sample_outbound(self) -> Optional[Tuple[OutboundVideoSample, Optional[float]]]:
        """송신 비디오 통계를 한 번 읽고 직전 값과의 비트레이트를 계산합니다."""
        if self.closed:
            return None
        reports = await self.pc.getStats()
        # 조회 중 링크가 닫혔으면 결과 폐기
        if self.closed:
            return None

        sample = read_outbound_video(reports, self._video_meter())
        if sample is None:
            return None
        bitrate = bitrate_between(self.last_sample, sample)
        self.last_sample = sample
        self.enforce_bitrate_cap()
        return sample, bitrate

    async def relay_reports(self) -> Dict[str, Any]:
        """릴레이 판정용 통계 (getStats + 지명된 후보 쌍)."""
        reports = dict(await self.pc.getStats())
        reports.update(candidate_pair_reports(self.pc))
        return reports

    def enforce_bitrate_cap(self) -> None:
        """송신 비디오 인코더의 목표 비트레이트를 상한 이하로 유지합니다 (best-effort).

        Note:
            aiortc 인코더는 REMB 피드백으로 목표 비트레이트를 계속 갱신하므로
            통계 샘플링마다 다시 적용합니다.
        """
        if self.max_bitrate is None:
            return
        for sender in self.video_senders():
            encoder = getattr(sender, "_RTCRtpSender__encoder", None)
            current = getattr(encoder, "target_bitrate", None)
            if current is None:
                # 첫 프레임 인코딩 전에는 인코더가 없음
                if not self._cap_unreachable_logged:
                    logger.debug(f"[WebRTC] {self.peer_id} 인코더에 접근할 수 없어 "
                                 f"비트레이트 상한 미적용 ({self.max_bitrate}bps)")
                    self._cap_unreachable_logged = True
                continue
            if current > self.max_bitrate:
                encoder.target_bitrate = self.max_bitrate

    async def close(self) -> None:
        if self.closed:
            return
        self.state = LinkState.CLOSED
        self.cancel_restart_timer()
        if self.worker is not None:
            self.worker.cancel()
        for track in self.local_tracks:
            track.stop()
        await self.sink.stop()
        await self.pc.close()

    def cancel_restart_timer(self) -> None:
        if self.restart_timer is not None:
            self.restart_timer.cancel()
            self.restart_timer = None


def _session_description(payload: Any, default_type: str) -> RTCSessionDescription:
    if isinstance(payload, dict):
        return RTCSessionDescription(sdp=payload["sdp"], type=payload.get("type", default_type))
    return RTCSessionDescription(sdp=payload, type=default_type)


def _parse_candidate(payload: Any):
    """브라우저 형식 candidate 딕셔너리를 RTCIceCandidate로 변환합니다.

    Returns:
        RTCIceCandidate 또는 None (end-of-candidates)
    """
    if isinstance(payload, dict):
        candidate_str = payload.get("candidate") or ""
        sdp_mid = payload.get("sdpMid")
        sdp_mline_index = payload.get("sdpMLineIndex")
    else:
        candidate_str = payload or ""
        sdp_mid = None
        sdp_mline_index = 0

    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[10:]
    if not candidate_str:
        return None

    candidate = candidate_from_sdp(candidate_str)
    candidate.sdpMid = sdp_mid
    candidate.sdpMLineIndex = sdp_mline_index
    return candidate


def _candidate_payload(candidate) -> Dict[str, Any]:
    return {
        "candidate": f"candidate:{candidate_to_sdp(candidate)}",
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


class ConnectionOrchestrator:
    """로컬 참가자의 모든 PeerLink를 관리하는 클래스.

    Args:
        signaling: ``send(event, data)``와 ``close()`` 코루틴을 제공하는 시그널링 전송
        media (LocalMedia): 로컬 캡처 트랙
        ice_servers (list): ICE 서버 딕셔너리 목록
        pc_factory: RTCPeerConnection 생성 함수 (기본값은 ice_servers로 구성)
        config (ConnectionConfig): 통계/재시작 주기 설정
        tiers: 품질 단계 목록
        start_tier_index (int): 시작 품질 단계
        wake_lock: 세션 동안 유지되는 화면 유지 자원 (``release()`` 제공, 선택)

    Attributes:
        links (Dict[str, PeerLink]): 피어 ID → PeerLink
        local_id (Optional[str]): 서버가 부여한 로컬 식별자
        quality (QualityController): 공용 품질 단계 제어기
        relay (RelayPathDetector): 릴레이 경로 감지기
        failure (Optional[Exception]): 세션을 끝낸 오류 (예: RoomFullError)

    Examples:
        >>> orchestrator = ConnectionOrchestrator(signaling, media, ice_servers)
        >>> orchestrator.start()
        >>> await orchestrator.handle_event("room-joined", {"participants": ["abc"]})
        >>> orchestrator.participant_count
        2
    """

    def __init__(
        self,
        signaling,
        media: LocalMedia,
        ice_servers: List[IceServer],
        pc_factory: Optional[Callable[[], RTCPeerConnection]] = None,
        config: ConnectionConfig = connection_config,
        tiers: List[QualityTier] = QUALITY_TIERS,
        start_tier_index: int = 0,
        wake_lock: Any = None,
    ):
        self.signaling = signaling
        self.media = media
        self.ice_servers = ice_servers
        self.config = config
        self.wake_lock = wake_lock

        self.links: Dict[str, PeerLink] = {}
        self.local_id: Optional[str] = None
        self.room_code: Optional[str] = None
        self.failure: Optional[Exception] = None
        self.finished = asyncio.Event()

        # UI 대신 사용하는 훅
        self.on_remote_track: Optional[Callable[[str, MediaStreamTrack], None]] = None
        self.on_relay_changed: Optional[Callable[[bool], None]] = None

        self._pc_factory = pc_factory or self._default_pc_factory
        self.quality = QualityController(
            self.active_links,
            self.apply_tier,
            tiers=tiers,
            interval=config.STATS_INTERVAL,
            start_index=start_tier_index,
        )
        self.relay = RelayPathDetector(
            interval=config.RELAY_CHECK_INTERVAL,
            on_change=self._relay_changed,
        )

    # ------------------------------------------------------------------
    # 상태 조회
    # ------------------------------------------------------------------

    @property
    def participant_count(self) -> int:
        """로컬 참가자를 포함한 방 인원."""
        return 1 + len(self.links)

    def active_links(self) -> List[PeerLink]:
        return [link for link in self.links.values() if not link.closed]

    def link_states(self) -> Dict[str, LinkState]:
        return {peer_id: link.state for peer_id, link in self.links.items()}

    # ------------------------------------------------------------------
    # 수명 주기
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.quality.start()

    async def wait(self) -> None:
        """세션이 끝날 때까지 대기합니다.

        Raises:
            RoomFullError: 방이 가득 차 입장하지 못한 경우
        """
        await self.finished.wait()
        if self.failure is not None:
            raise self.failure

    async def leave(self) -> None:
        """모든 링크를 닫고 로컬 미디어를 정지한 뒤 시그널링을 종료합니다 (best-effort)."""
        logger.info("[WebRTC] 방 나가기")
        await self.quality.stop()
        await self.relay.stop()
        await self.close_all_links()

        self.media.stop()

        if self.wake_lock is not None:
            try:
                self.wake_lock.release()
            except Exception as e:
                logger.warning(f"[WebRTC] 화면 유지 해제 실패: {e}")
            self.wake_lock = None

        try:
            await self.signaling.send(protocol.LEAVE_ROOM, {})
        except Exception as e:
            logger.warning(f"[WebRTC] leave-room 전송 실패: {e}")
        try:
            await self.signaling.close()
        except Exception as e:
            logger.warning(f"[WebRTC] 시그널링 종료 실패: {e}")

        self.finished.set()

    # ------------------------------------------------------------------
    # 시그널링 이벤트
    # ------------------------------------------------------------------

    async def handle_event(self, event: str, data: Dict[str, Any]) -> None:
        """시그널링 서버에서 받은 이벤트 하나를 처리합니다."""
        if event == protocol.CONNECTED:
            self.local_id = data.get("socketId")
            logger.info(f"[WebRTC] 시그널링 식별자: {self.local_id}")

        elif event == protocol.ROOM_JOINED:
            participants = data.get("participants", [])
            logger.info(f"[WebRTC] 방 입장 완료, 기존 참가자 {len(participants)}명")
            for peer_id in participants:
                await self.introduce(PeerIntroduction(peer_id, initiator=True))

        elif event == protocol.PARTICIPANT_JOINED:
            await self.introduce(PeerIntroduction(data["socketId"], initiator=False))

        elif event == protocol.PARTICIPANT_LEFT:
            await self.remove_link(data["socketId"])

        elif event in (protocol.OFFER, protocol.ANSWER, protocol.ICE_CANDIDATE):
            sender = data.get("sender")
            link = self.links.get(sender)
            if link is None and event == protocol.OFFER:
                link = await self.introduce(PeerIntroduction(sender, initiator=False))
            if link is None:
                logger.debug(f"[WebRTC] 알 수 없는 피어의 {event} 무시: {sender}")
                return
            link.inbox.put_nowait((event, data))

        elif event == protocol.ROOM_FULL:
            logger.warning(f"[WebRTC] 방이 가득 참: {self.room_code}")
            self.failure = RoomFullError(self.room_code or "")
            self.finished.set()

        elif event == protocol.ERROR:
            logger.warning(f"[WebRTC] 시그널링 오류: {data.get('message')}")

        else:
            logger.debug(f"[WebRTC] 처리하지 않는 이벤트: {event}")

    async def on_signaling_lost(self) -> None:
        """시그널링 연결이 끊기면 방 멤버십이 사라진 것으로 보고 모든 링크를 닫습니다."""
        if self.links:
            logger.warning(f"[WebRTC] 시그널링 끊김, 링크 {len(self.links)}개 정리")
        await self.close_all_links()
        await self.quality.on_roster_changed()

    # ------------------------------------------------------------------
    # 링크 관리
    # ------------------------------------------------------------------

    async def introduce(self, intro: PeerIntroduction) -> Optional[PeerLink]:
        """새 피어에 대한 PeerLink를 만들고 필요하면 offer를 시작합니다."""
        if intro.peer_id == self.local_id:
            return None
        existing = self.links.get(intro.peer_id)
        if existing is not None:
            return existing

        pc = self._pc_factory()
        link = PeerLink(
            intro.peer_id,
            pc,
            intro.initiator,
            video_meter=lambda: self.media.video,
        )
        link.max_bitrate = self.quality.current_tier.max_bitrate
        self.links[intro.peer_id] = link

        for track in self.media.subscribed_tracks():
            pc.addTrack(track)
            link.local_tracks.append(track)
        self._register_handlers(link)

        link.worker = asyncio.create_task(self._run_worker(link))
        if intro.initiator:
            link.inbox.put_nowait((_NEGOTIATE, {}))

        logger.info(f"[WebRTC] 링크 생성: {intro.peer_id} (initiator={intro.initiator}), "
                    f"참가자 {self.participant_count}명")
        await self.quality.on_roster_changed()
        return link

    async def remove_link(self, peer_id: str) -> None:
        link = self.links.pop(peer_id, None)
        if link is None:
            return
        self.relay.unwatch(peer_id)
        await link.close()
        logger.info(f"[WebRTC] 링크 제거: {peer_id}, 참가자 {self.participant_count}명")
        await self.quality.on_roster_changed()

    async def close_all_links(self) -> None:
        links = list(self.links.values())
        self.links.clear()
        for link in links:
            self.relay.unwatch(link.peer_id)
            try:
                await link.close()
            except Exception as e:
                logger.warning(f"[WebRTC] 링크 종료 실패 ({link.peer_id}): {e}")

    def _register_handlers(self, link: PeerLink) -> None:
        pc = link.pc

        @pc.on("track")
        async def on_track(track: MediaStreamTrack):
            if link.closed:
                return
            logger.info(f"[WebRTC] {link.peer_id} 원격 {track.kind} 트랙 수신")
            link.remote_tracks.append(track)
            link.sink.addTrack(track)
            await link.sink.start()
            if self.on_remote_track:
                self.on_remote_track(link.peer_id, track)

        @pc.on("icecandidate")
        async def on_ice_candidate(candidate):
            if candidate is None or link.closed:
                return
            await self._send(protocol.ICE_CANDIDATE, {
                "target": link.peer_id,
                "candidate": _candidate_payload(candidate),
            })

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.info(f"[WebRTC] {link.peer_id} 연결 상태: {pc.connectionState}")
            if link.closed:
                return
            if pc.connectionState == "connected":
                link.state = LinkState.CONNECTED
                link.restart_attempts = 0
                link.cancel_restart_timer()
                link.enforce_bitrate_cap()
                self.relay.watch(link)
            elif pc.connectionState == "failed":
                self._on_transport_failed(link)

        @pc.on("iceconnectionstatechange")
        async def on_ice_connection_state_change():
            state = pc.iceConnectionState
            logger.info(f"[WebRTC] {link.peer_id} ICE 상태: {state}")
            if link.closed:
                return
            if state == "failed":
                self._on_transport_failed(link)
            elif state == "disconnected" and link.restart_timer is None:
                self._schedule_recovery_check(link)

    # ------------------------------------------------------------------
    # ICE 재시작
    # ------------------------------------------------------------------
    #
    # failed → 즉시 재시작 → ICE_RESTART_DELAY 후에도 끊겨 있으면 다시 재시작
    # → 그래도 끊겨 있으면 FAILED. aiortc는 상태가 바뀔 때만 이벤트를 내므로
    # 이후 단계는 타이머로 확인합니다.

    def _is_broken(self, link: PeerLink) -> bool:
        return (link.pc.iceConnectionState in ("disconnected", "failed")
                or link.pc.connectionState == "failed")

    def _on_transport_failed(self, link: PeerLink) -> None:
        # 이미 확인 타이머가 걸려 있으면 타이머가 처리
        if link.restart_timer is not None or link.state is LinkState.FAILED:
            return
        self._restart_ice(link)

    def _schedule_recovery_check(self, link: PeerLink) -> None:
        link.cancel_restart_timer()
        link.restart_timer = asyncio.get_running_loop().call_later(
            self.config.ICE_RESTART_DELAY, self._check_recovery, link
        )

    def _check_recovery(self, link: PeerLink) -> None:
        link.restart_timer = None
        if not link.closed and self._is_broken(link):
            self._restart_ice(link)

    def _restart_ice(self, link: PeerLink) -> None:
        if link.restart_attempts >= self.config.MAX_ICE_RESTARTS:
            if link.state is not LinkState.FAILED:
                link.state = LinkState.FAILED
                logger.error(f"[WebRTC] {link.peer_id} 연결 실패, 재시작 포기")
            return

        link.restart_attempts += 1
        link.state = LinkState.NEGOTIATING
        logger.warning(f"[WebRTC] {link.peer_id} ICE 재시작 {link.restart_attempts}/"
                       f"{self.config.MAX_ICE_RESTARTS}")
        # 양쪽이 동시에 offer를 만들지 않도록 initiator만 재협상
        if link.initiator:
            link.inbox.put_nowait((_NEGOTIATE, {}))
        self._schedule_recovery_check(link)

    # ------------------------------------------------------------------
    # 링크별 협상 worker
    # ------------------------------------------------------------------

    async def _run_worker(self, link: PeerLink) -> None:
        while not link.closed:
            event, data = await link.inbox.get()
            try:
                await self._apply(link, event, data)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[WebRTC] {link.peer_id} {event} 처리 실패: {e}", exc_info=True)
            finally:
                link.inbox.task_done()

    async def _apply(self, link: PeerLink, event: str, data: Dict[str, Any]) -> None:
        pc = link.pc

        if event == _NEGOTIATE:
            if link.state is LinkState.CREATED:
                link.state = LinkState.NEGOTIATING
            offer = await pc.createOffer()
            await pc.setLocalDescription(offer)
            await self._send(protocol.OFFER, {
                "target": link.peer_id,
                "sdp": {"type": pc.localDescription.type, "sdp": pc.localDescription.sdp},
            })

        elif event == protocol.OFFER:
            if link.state is LinkState.CREATED:
                link.state = LinkState.NEGOTIATING
            await pc.setRemoteDescription(_session_description(data["sdp"], "offer"))
            await self._flush_candidates(link)
            answer = await pc.createAnswer()
            await pc.setLocalDescription(answer)
            await self._send(protocol.ANSWER, {
                "target": link.peer_id,
                "sdp": {"type": pc.localDescription.type, "sdp": pc.localDescription.sdp},
            })

        elif event == protocol.ANSWER:
            await pc.setRemoteDescription(_session_description(data["sdp"], "answer"))
            await self._flush_candidates(link)

        elif event == protocol.ICE_CANDIDATE:
            candidate = _parse_candidate(data.get("candidate"))
            if candidate is None:
                return
            if pc.remoteDescription is None:
                link.pending_candidates.append(candidate)
            else:
                await pc.addIceCandidate(candidate)

    async def _flush_candidates(self, link: PeerLink) -> None:
        pending, link.pending_candidates = link.pending_candidates, []
        for candidate in pending:
            await link.pc.addIceCandidate(candidate)

    # ------------------------------------------------------------------
    # 품질 / 카메라
    # ------------------------------------------------------------------

    async def apply_tier(self, tier: QualityTier) -> None:
        """품질 단계를 로컬 캡처 트랙과 모든 링크의 송신 비트레이트에 적용합니다."""
        video = self.media.video
        if video is not None:
            video.apply_constraints(tier.width, tier.height, tier.frame_rate)
        for link in self.active_links():
            link.max_bitrate = tier.max_bitrate
            link.enforce_bitrate_cap()

    async def switch_camera(self) -> bool:
        """다른 카메라로 전환합니다 (재협상 없이 송신 트랙만 교체).

        Returns:
            bool: 전환 성공 여부. 실패 시 기존 카메라가 그대로 유지됨
        """
        if not self.media.has_alternate_camera:
            return False

        self.media.using_alternate_camera = not self.media.using_alternate_camera
        try:
            track = self.media.open_target_video(self.quality.current_tier)
        except MediaAcquisitionError as e:
            self.media.using_alternate_camera = not self.media.using_alternate_camera
            logger.error(f"[WebRTC] 카메라 전환 실패: {e.message}")
            return False

        for link in self.active_links():
            for sender in link.video_senders():
                old = sender.track
                subscription = self.media.subscribe(track)
                sender.replaceTrack(subscription)
                link.local_tracks = [t for t in link.local_tracks if t is not old] + [subscription]
                old.stop()
        self.media.replace_video(track)
        logger.info(f"[WebRTC] 카메라 전환: {self.media.target_video_device}")
        return True

    # ------------------------------------------------------------------
    # 내부 유틸
    # ------------------------------------------------------------------

    def _default_pc_factory(self) -> RTCPeerConnection:
        return RTCPeerConnection(configuration=build_rtc_configuration(self.ice_servers))

    def _relay_changed(self, relayed: bool) -> None:
        logger.info(f"[WebRTC] 릴레이 경유: {relayed}")
        if self.on_relay_changed:
            self.on_relay_changed(relayed)

    async def _send(self, event: str, data: Dict[str, Any]) -> None:
        try:
            await self.signaling.send(event, data)
        except Exception as e:
            logger.warning(f"[WebRTC] {event} 전송 실패: {e}")
