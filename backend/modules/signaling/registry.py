"""룸 레지스트리 모듈.

4자리 숫자 코드로 식별되는 룸과 각 룸의 참가자(연결 ID)를 관리하는
프로세스 단위 서비스 객체입니다.

주요 기능:
    - 룸 코드 생성 (충돌 시 제한 횟수 재시도)
    - 코드로 직접 입장 시 룸 지연 생성
    - 정원(기본 4명) 검사와 입장을 하나의 원자적 단계로 처리
    - 마지막 참가자 퇴장 후 유예 시간이 지나면 룸 삭제 (재입장 시 취소)
    - 오래 비어있는 룸을 주기적으로 정리하는 백그라운드 스윕

Architecture:
    - rooms: Dict[str, Room] - 룸 코드 → 룸 상태
    - 모든 변경 연산은 레지스트리 전역 락 안에서 수행

Thread Safety:
    - asyncio 단일 스레드에서는 각 연산이 await 없이 완료되므로 자연히 직렬화됨
    - 멀티 스레드에서 호출되어도 전역 락으로 동일한 직렬화를 보장

See Also:
    gateway.py: WebSocket 세션 게이트웨이
"""

import asyncio
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Set

from .config import room_config

logger = logging.getLogger(__name__)


class AdmitResult(Enum):
    """입장 요청 처리 결과."""

    ADMITTED = "admitted"
    ROOM_FULL = "room_full"


@dataclass
class Room:
    """레지스트리 내부 룸 상태.

    Attributes:
        code (str): 4자리 숫자 룸 코드
        participants (Set[str]): 현재 참가 중인 연결 ID 집합
        created_at (float): 생성 시각 (epoch seconds)
        empty_since (Optional[float]): 마지막으로 비게 된 시각. 참가자가 있으면 None
        cleanup_handle (Optional[asyncio.TimerHandle]): 예약된 지연 삭제 핸들
    """
    code: str
    participants: Set[str] = field(default_factory=set)
    created_at: float = 0.0
    empty_since: Optional[float] = None
    cleanup_handle: Optional[asyncio.TimerHandle] = None


@dataclass(frozen=True)
class RoomInfo:
    """외부에 노출되는 룸 스냅샷."""

    code: str
    participants: FrozenSet[str]
    created_at: float
    max_participants: int

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    @property
    def is_full(self) -> bool:
        return self.participant_count >= self.max_participants


class RoomRegistry:
    """룸 코드 → 참가자 집합을 관리하는 권한 있는 레지스트리.

    게이트웨이는 이 객체를 참조로 전달받아 모든 룸 상태 변경을 여기로
    위임합니다. 모듈 전역 딕셔너리를 직접 다루지 않습니다.

    Attributes:
        max_participants (int): 룸 정원
        grace_period (float): 빈 룸 지연 삭제 대기 시간 (초)
        stale_after (float): 빈 룸을 스윕 대상으로 보는 시간 (초)
        sweep_interval (float): 스윕 주기 (초)

    Examples:
        >>> registry = RoomRegistry()
        >>> code = registry.create_room()
        >>> registry.admit(code, "conn-1")
        <AdmitResult.ADMITTED: 'admitted'>
        >>> registry.get_room(code).participant_count
        1
    """

    def __init__(
        self,
        max_participants: int = room_config.MAX_PARTICIPANTS,
        grace_period: float = room_config.EMPTY_ROOM_GRACE_SECONDS,
        stale_after: float = room_config.STALE_ROOM_SECONDS,
        sweep_interval: float = room_config.SWEEP_INTERVAL_SECONDS,
        code_attempts: int = room_config.CODE_GENERATION_ATTEMPTS,
        code_length: int = room_config.ROOM_CODE_LENGTH,
        clock: Callable[[], float] = time.time,
    ):
        self.max_participants = max_participants
        self.grace_period = grace_period
        self.stale_after = stale_after
        self.sweep_interval = sweep_interval
        self.code_attempts = code_attempts
        self.code_length = code_length
        self._clock = clock

        # room_code -> Room
        self._rooms: Dict[str, Room] = {}
        self._lock = threading.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------

    @property
    def room_count(self) -> int:
        with self._lock:
            return len(self._rooms)

    def get_room(self, code: str) -> Optional[RoomInfo]:
        """룸 스냅샷을 반환합니다. 없으면 None."""
        with self._lock:
            room = self._rooms.get(code)
            return self._snapshot(room) if room else None

    def participants(self, code: str) -> List[str]:
        """룸의 참가자 연결 ID 목록을 반환합니다."""
        with self._lock:
            room = self._rooms.get(code)
            return list(room.participants) if room else []

    # ------------------------------------------------------------
    # 변경
    # ------------------------------------------------------------

    def create_room(self) -> str:
        """새 룸 코드를 발급하고 빈 룸을 생성합니다.

        무작위 코드를 뽑아 기존 룸과 겹치면 ``code_attempts`` 회까지 다시
        뽑습니다. 모두 실패하면 미사용 코드 중 하나를 고르고, 코드 공간이
        가득 찬 경우에는 마지막으로 뽑은 코드를 그대로 반환합니다.
        이 경우 기존 룸 상태는 덮어쓰지 않습니다 (약한 유일성 보장).

        Returns:
            str: 발급된 4자리 룸 코드
        """
        with self._lock:
            code = self._draw_code()
            attempts = 1
            while code in self._rooms and attempts < self.code_attempts:
                code = self._draw_code()
                attempts += 1

            if code in self._rooms:
                free_codes = self._free_codes()
                if free_codes:
                    code = random.choice(free_codes)
                else:
                    logger.warning(f"[Room] 사용 가능한 룸 코드 없음, 기존 룸 '{code}' 코드 재사용")
                    return code

            self._rooms[code] = self._new_room(code)
            logger.info(f"[Room] 룸 '{code}' 생성 (시도 {attempts}회)")
            return code

    def ensure_room(self, code: str) -> RoomInfo:
        """룸이 있으면 반환하고, 없으면 해당 코드로 빈 룸을 생성합니다."""
        with self._lock:
            return self._snapshot(self._ensure_locked(code))

    def admit(self, code: str, identity: str) -> AdmitResult:
        """참가자를 룸에 입장시킵니다.

        정원 검사와 삽입은 같은 락 구간에서 수행되므로 동시 입장 요청이
        있어도 참가자 수가 정원을 넘지 않습니다. 룸이 없으면 지연 생성합니다.

        Args:
            code: 룸 코드
            identity: 입장할 연결 ID

        Returns:
            AdmitResult: ADMITTED 또는 ROOM_FULL
        """
        with self._lock:
            room = self._ensure_locked(code)

            if identity in room.participants:
                return AdmitResult.ADMITTED

            if len(room.participants) >= self.max_participants:
                logger.info(f"[Room] 룸 '{code}' 정원 초과로 {identity[:8]} 입장 거부")
                return AdmitResult.ROOM_FULL

            room.participants.add(identity)
            room.empty_since = None
            if room.cleanup_handle is not None:
                room.cleanup_handle.cancel()
                room.cleanup_handle = None
                logger.debug(f"[Room] 룸 '{code}' 지연 삭제 취소 (재입장)")

            logger.info(f"[Room] {identity[:8]} 룸 '{code}' 입장 "
                        f"({len(room.participants)}/{self.max_participants})")
            return AdmitResult.ADMITTED

    def remove(self, code: str, identity: str) -> bool:
        """참가자를 룸에서 제거합니다.

        제거 후 룸이 비면 ``grace_period`` 뒤 삭제를 예약합니다. 예약 시점에
        실행 중인 이벤트 루프가 없으면 백그라운드 스윕에만 맡깁니다.

        Returns:
            bool: 실제로 제거되었으면 True
        """
        with self._lock:
            room = self._rooms.get(code)
            if room is None or identity not in room.participants:
                return False

            room.participants.discard(identity)
            logger.info(f"[Room] {identity[:8]} 룸 '{code}' 퇴장 "
                        f"({len(room.participants)}/{self.max_participants})")

            if not room.participants:
                room.empty_since = self._clock()
                self._schedule_cleanup(room)
            return True

    def sweep(self) -> int:
        """오래 비어있는 룸을 삭제합니다.

        Returns:
            int: 삭제된 룸 수
        """
        now = self._clock()
        removed = 0
        with self._lock:
            for code, room in list(self._rooms.items()):
                if room.participants or room.empty_since is None:
                    continue
                if now - room.empty_since > self.stale_after:
                    self._delete_locked(code)
                    removed += 1
        if removed:
            logger.info(f"[Room] 오래된 빈 룸 {removed}개 정리")
        return removed

    # ------------------------------------------------------------
    # 백그라운드 스윕
    # ------------------------------------------------------------

    async def start(self) -> None:
        """주기적 스윕 태스크를 시작합니다."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(f"[Room] 빈 룸 스윕 시작 (주기 {self.sweep_interval}s)")

    async def stop(self) -> None:
        """스윕 태스크와 예약된 지연 삭제를 모두 취소합니다."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        with self._lock:
            for room in self._rooms.values():
                if room.cleanup_handle is not None:
                    room.cleanup_handle.cancel()
                    room.cleanup_handle = None
        logger.info("[Room] 룸 레지스트리 정지")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"[Room] 룸 스윕 중 오류: {e}", exc_info=True)

    # ------------------------------------------------------------
    # 내부 헬퍼 (락 보유 상태에서 호출)
    # ------------------------------------------------------------

    def _draw_code(self) -> str:
        return "".join(random.choices("0123456789", k=self.code_length))

    def _free_codes(self) -> List[str]:
        total = 10 ** self.code_length
        return [
            code for code in (str(n).zfill(self.code_length) for n in range(total))
            if code not in self._rooms
        ]

    def _new_room(self, code: str) -> Room:
        now = self._clock()
        return Room(code=code, created_at=now, empty_since=now)

    def _ensure_locked(self, code: str) -> Room:
        room = self._rooms.get(code)
        if room is None:
            room = self._new_room(code)
            self._rooms[code] = room
            logger.info(f"[Room] 룸 '{code}' 생성 (코드로 직접 입장)")
        return room

    def _snapshot(self, room: Room) -> RoomInfo:
        return RoomInfo(
            code=room.code,
            participants=frozenset(room.participants),
            created_at=room.created_at,
            max_participants=self.max_participants,
        )

    def _schedule_cleanup(self, room: Room) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"[Room] 이벤트 루프 없음, 룸 '{room.code}' 삭제는 스윕에 맡김")
            return

        if room.cleanup_handle is not None:
            room.cleanup_handle.cancel()
        room.cleanup_handle = loop.call_later(self.grace_period, self._expire, room.code)
        logger.debug(f"[Room] 룸 '{room.code}' {self.grace_period}s 후 삭제 예약")

    def _expire(self, code: str) -> None:
        with self._lock:
            room = self._rooms.get(code)
            if room is None:
                return
            room.cleanup_handle = None
            # 유예 시간 동안 누군가 재입장했으면 유지
            if room.participants:
                return
            self._delete_locked(code)
        logger.info(f"[Room] 룸 '{code}' 삭제 (유예 시간 경과)")

    def _delete_locked(self, code: str) -> None:
        room = self._rooms.pop(code, None)
        if room is not None and room.cleanup_handle is not None:
            room.cleanup_handle.cancel()
