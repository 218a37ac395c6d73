"""적응형 화질 제어 모듈.

모든 peer 링크의 송신 비디오 통계를 주기적으로 샘플링하여, 가장 나쁜 링크의
fps를 기준으로 공용 품질 단계(QualityTier)를 올리거나 내립니다.

판단 규칙 (현재 단계의 목표 fps 기준):
    - fps < 60% 가 3회 연속  → 한 단계 하향
    - fps ≥ 85% 가 8회 연속 → 한 단계 상향
    - 그 사이 값            → 두 카운터 모두 초기화
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

from .config import connection_config
from .stats import format_bitrate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QualityTier:
    """품질 단계 하나.

    Attributes:
        width (int): 캡처 가로 해상도 (ideal)
        height (int): 캡처 세로 해상도 (ideal)
        frame_rate (int): 목표 프레임레이트
        max_bitrate (int): 송신 비디오 최대 비트레이트 (bps)
        label (str): 표시 이름
    """
    width: int
    height: int
    frame_rate: int
    max_bitrate: int
    label: str


# 높은 화질 → 낮은 화질 순서 (인덱스 0이 최고)
QUALITY_TIERS: List[QualityTier] = [
    QualityTier(1920, 1080, 30, 10_000_000, "1080p+"),
    QualityTier(1920, 1080, 30, 5_000_000, "1080p"),
    QualityTier(1280, 720, 30, 2_500_000, "720p"),
    QualityTier(960, 540, 24, 1_200_000, "540p"),
    QualityTier(640, 360, 20, 600_000, "360p"),
]


@dataclass(frozen=True)
class StatsSummary:
    """최근 샘플링 결과 요약 (표시용)."""
    resolution: str
    fps: int
    bitrate: float

    def describe(self) -> str:
        parts = [part for part in (self.resolution, f"{self.fps}fps", format_bitrate(self.bitrate)) if part]
        return " ".join(parts)


class QualityController:
    """공용 품질 단계를 조정하는 폐루프 제어기.

    링크는 ``sample_outbound()`` 코루틴을 제공해야 하며, 결과는
    ``(OutboundVideoSample, bitrate 또는 None)`` 튜플 또는 None입니다.

    Args:
        links_provider: 현재 활성 링크 목록을 반환하는 함수
        apply_tier: 새 단계를 캡처 트랙과 모든 링크에 적용하는 코루틴 함수
        tiers: 품질 단계 목록 (높은 → 낮은)
        interval: 샘플링 주기 (초)
        start_index: 시작 단계 인덱스

    Examples:
        >>> controller = QualityController(lambda: [], apply_tier)
        >>> controller.observe(10.0)
        False
    """

    DEGRADE_RATIO = 0.6
    IMPROVE_RATIO = 0.85
    DEGRADE_AFTER = 3
    IMPROVE_AFTER = 8

    def __init__(
        self,
        links_provider: Callable[[], Iterable],
        apply_tier: Callable[[QualityTier], Awaitable[None]],
        tiers: Sequence[QualityTier] = QUALITY_TIERS,
        interval: float = connection_config.STATS_INTERVAL,
        start_index: int = 0,
    ):
        if not tiers:
            raise ValueError("at least one quality tier is required")
        self.tiers = list(tiers)
        self.tier_index = min(max(start_index, 0), len(self.tiers) - 1)
        self.degrade_count = 0
        self.improve_count = 0
        self.latest: Optional[StatsSummary] = None
        self.interval = interval

        self._links_provider = links_provider
        self._apply_tier = apply_tier
        self._task: Optional[asyncio.Task] = None

    @property
    def current_tier(self) -> QualityTier:
        return self.tiers[self.tier_index]

    def observe(self, fps: float) -> bool:
        """fps 측정값 하나를 반영합니다.

        Returns:
            bool: 단계가 바뀌었으면 True
        """
        target = self.current_tier.frame_rate

        if 0 < fps < target * self.DEGRADE_RATIO:
            self.degrade_count += 1
            self.improve_count = 0
        elif fps >= target * self.IMPROVE_RATIO:
            self.improve_count += 1
            self.degrade_count = 0
        else:
            self.degrade_count = 0
            self.improve_count = 0

        if self.degrade_count >= self.DEGRADE_AFTER and self.tier_index < len(self.tiers) - 1:
            self.tier_index += 1
            self._reset_counters()
            logger.info(f"[Quality] 화질 하향: {self.current_tier.label}")
            return True

        if self.improve_count >= self.IMPROVE_AFTER and self.tier_index > 0:
            self.tier_index -= 1
            self._reset_counters()
            logger.info(f"[Quality] 화질 상향: {self.current_tier.label}")
            return True

        return False

    async def sample(self) -> None:
        """모든 링크의 송신 통계를 한 번 수집하고 단계를 조정합니다."""
        links = list(self._links_provider())
        if not links:
            self.latest = None
            return

        min_fps: Optional[float] = None
        display_fps = 0.0
        resolution = ""
        peak_bitrate = 0.0

        for link in links:
            try:
                result = await link.sample_outbound()
            except Exception as e:
                logger.debug(f"[Quality] 통계 조회 실패: {e}")
                continue
            if result is None:
                continue

            sample, bitrate = result
            if sample.height:
                resolution = f"{sample.height}p"
            display_fps = sample.fps
            if sample.fps > 0:
                min_fps = sample.fps if min_fps is None else min(min_fps, sample.fps)
            if bitrate is not None:
                peak_bitrate = max(peak_bitrate, bitrate)

        fps = round(display_fps)
        if fps > 0:
            self.latest = StatsSummary(resolution=resolution, fps=fps, bitrate=peak_bitrate)

        if min_fps is not None and self.observe(min_fps):
            await self.apply_current_tier()

    async def apply_current_tier(self) -> None:
        try:
            await self._apply_tier(self.current_tier)
        except Exception as e:
            logger.warning(f"[Quality] 단계 적용 실패 ({self.current_tier.label}): {e}")

    async def on_roster_changed(self) -> None:
        """참가자 수 변경 시 카운터만 초기화하고 현재 단계를 다시 적용합니다."""
        self._reset_counters()
        await self.apply_current_tier()

    def describe(self) -> str:
        """``"720p 30fps 2.5Mbps"`` 형식의 통계 요약. 피어가 없으면 빈 문자열."""
        return self.latest.describe() if self.latest else ""

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            logger.info(f"[Quality] 화질 제어 시작 (주기 {self.interval}s, 단계 {self.current_tier.label})")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.sample()

    def _reset_counters(self) -> None:
        self.degrade_count = 0
        self.improve_count = 0
