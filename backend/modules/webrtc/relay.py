"""릴레이(TURN) 경로 감지 모듈.

링크별로 연결 직후 한 번, 이후 주기적으로 지명된 후보 쌍을 검사하여 릴레이
경유 여부를 판정하고, 하나라도 릴레이 경유면 True인 집계 값을 제공합니다.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

from .config import connection_config
from .stats import is_relay_routed

logger = logging.getLogger(__name__)


class RelayPathDetector:
    """링크별 릴레이 경로 검사기.

    감시 대상 링크는 ``peer_id`` 속성과 ``relay_reports()`` 코루틴(통계 리포트
    딕셔너리 반환)을 제공해야 합니다.

    Args:
        interval: 링크당 검사 주기 (초)
        on_change: 집계 값이 바뀔 때 새 값으로 호출되는 콜백
    """

    def __init__(
        self,
        interval: float = connection_config.RELAY_CHECK_INTERVAL,
        on_change: Optional[Callable[[bool], None]] = None,
    ):
        self.interval = interval
        self.on_change = on_change
        self._links: Dict[str, object] = {}
        self._results: Dict[str, bool] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._aggregate = False

    @property
    def is_relayed(self) -> bool:
        return self._aggregate

    def is_watching(self, peer_id: str) -> bool:
        return peer_id in self._links

    def watch(self, link) -> None:
        """링크 감시를 시작합니다 (즉시 검사 후 주기 반복). 이미 감시 중이면 무시."""
        if link.peer_id in self._links:
            return
        self._links[link.peer_id] = link
        self._tasks[link.peer_id] = asyncio.create_task(self._monitor(link))
        logger.debug(f"[Relay] 감시 시작: {link.peer_id}")

    def unwatch(self, peer_id: str) -> None:
        """링크 감시를 중단하고 집계 값을 다시 계산합니다."""
        self._links.pop(peer_id, None)
        self._results.pop(peer_id, None)
        task = self._tasks.pop(peer_id, None)
        if task is not None:
            task.cancel()
        self._recompute()

    async def check(self, link) -> Optional[bool]:
        """링크 하나를 검사합니다.

        Returns:
            Optional[bool]: 릴레이 경유 여부. 검사 중 링크가 제거되었으면 None
        """
        reports = await link.relay_reports()
        # 조회 중 링크가 제거/교체되었으면 결과 폐기
        if self._links.get(link.peer_id) is not link:
            return None

        relayed = is_relay_routed(reports)
        if self._results.get(link.peer_id) != relayed:
            logger.info(f"[Relay] {link.peer_id} 경로: {'relay' if relayed else 'direct'}")
        self._results[link.peer_id] = relayed
        link.is_relay = relayed
        self._recompute()
        return relayed

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        for peer_id in list(self._links):
            self.unwatch(peer_id)
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _monitor(self, link) -> None:
        while True:
            try:
                await self.check(link)
            except Exception as e:
                logger.debug(f"[Relay] {link.peer_id} 통계 조회 실패: {e}")
            await asyncio.sleep(self.interval)

    def _recompute(self) -> None:
        aggregate = any(self._results.values())
        if aggregate != self._aggregate:
            self._aggregate = aggregate
            if self.on_change:
                self.on_change(aggregate)
