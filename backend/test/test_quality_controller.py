"""적응형 화질 제어 테스트.

사용법:
    uv run pytest backend/test/test_quality_controller.py
"""

import asyncio
from unittest.mock import AsyncMock

from modules.webrtc.quality import QUALITY_TIERS, QualityController, QualityTier
from modules.webrtc.stats import OutboundVideoSample


class FakeLink:
    def __init__(self, fps, height=720, bitrate=None):
        self.fps = fps
        self.height = height
        self.bitrate = bitrate
        self.calls = 0

    async def sample_outbound(self):
        self.calls += 1
        if self.fps is None:
            return None
        sample = OutboundVideoSample(fps=self.fps, width=None, height=self.height,
                                     bytes_sent=0, timestamp=0.0)
        return sample, self.bitrate


def _controller(start_index=2, links=()):
    apply_tier = AsyncMock()
    controller = QualityController(lambda: list(links), apply_tier, start_index=start_index)
    return controller, apply_tier


def test_tiers_are_ordered_highest_first():
    assert [t.label for t in QUALITY_TIERS] == ["1080p+", "1080p", "720p", "540p", "360p"]
    assert QUALITY_TIERS[0].max_bitrate == 10_000_000
    assert QUALITY_TIERS[-1] == QualityTier(640, 360, 20, 600_000, "360p")


def test_three_low_samples_step_down_one_tier():
    controller, _ = _controller(start_index=2)

    assert controller.observe(15) is False
    assert controller.observe(15) is False
    assert controller.observe(15) is True

    assert controller.tier_index == 3
    assert controller.degrade_count == 0 and controller.improve_count == 0


def test_eight_good_samples_step_up_one_tier():
    controller, _ = _controller(start_index=2)

    changes = [controller.observe(30) for _ in range(8)]

    assert changes == [False] * 7 + [True]
    assert controller.tier_index == 1


def test_neutral_sample_resets_degrade_streak():
    controller, _ = _controller(start_index=2)

    controller.observe(15)
    controller.observe(15)
    controller.observe(20)  # 30fps의 60%~85% 사이

    assert controller.degrade_count == 0
    controller.observe(15)
    controller.observe(15)
    assert controller.tier_index == 2


def test_good_sample_resets_degrade_and_vice_versa():
    controller, _ = _controller(start_index=2)

    controller.observe(10)
    controller.observe(29)
    assert controller.degrade_count == 0 and controller.improve_count == 1

    controller.observe(10)
    assert controller.improve_count == 0 and controller.degrade_count == 1


def test_zero_fps_is_not_degrade_evidence():
    controller, _ = _controller(start_index=2)

    for _ in range(5):
        controller.observe(0)

    assert controller.tier_index == 2
    assert controller.degrade_count == 0


def test_bounds_are_respected():
    lowest, _ = _controller(start_index=len(QUALITY_TIERS) - 1)
    for _ in range(6):
        assert lowest.observe(1) is False
    assert lowest.tier_index == len(QUALITY_TIERS) - 1

    highest, _ = _controller(start_index=0)
    for _ in range(16):
        assert highest.observe(30) is False
    assert highest.tier_index == 0


def test_target_follows_current_tier():
    # 540p@24 단계: 24 * 0.85 = 20.4
    controller, _ = _controller(start_index=3)
    for _ in range(8):
        controller.observe(21)
    assert controller.tier_index == 2


async def test_sample_uses_minimum_fps_across_links():
    links = [FakeLink(30), FakeLink(12), FakeLink(0)]
    controller, apply_tier = _controller(start_index=2, links=links)

    for _ in range(3):
        await controller.sample()

    assert controller.tier_index == 3
    apply_tier.assert_awaited_once_with(QUALITY_TIERS[3])


async def test_sample_without_links_clears_stats():
    links = [FakeLink(30, bitrate=2_500_000)]
    controller, apply_tier = _controller(links=links)
    await controller.sample()
    assert controller.describe() == "720p 30fps 2.5Mbps"

    links.clear()
    await controller.sample()

    assert controller.describe() == ""
    assert controller.improve_count == 1
    apply_tier.assert_not_awaited()


async def test_summary_uses_peak_bitrate():
    links = [FakeLink(24, height=540, bitrate=850_000), FakeLink(24, height=540, bitrate=400_000)]
    controller, _ = _controller(links=links)

    await controller.sample()

    assert controller.describe() == "540p 24fps 850kbps"


async def test_links_without_stats_are_skipped():
    links = [FakeLink(None), FakeLink(None)]
    controller, apply_tier = _controller(links=links)

    await controller.sample()

    assert controller.describe() == ""
    assert controller.degrade_count == 0 and controller.improve_count == 0
    assert all(link.calls == 1 for link in links)


async def test_roster_change_resets_counters_and_reapplies_current_tier():
    controller, apply_tier = _controller(start_index=2)
    controller.observe(10)
    controller.observe(10)

    await controller.on_roster_changed()

    assert controller.tier_index == 2
    assert controller.degrade_count == 0
    apply_tier.assert_awaited_once_with(QUALITY_TIERS[2])


async def test_apply_failure_is_contained():
    controller = QualityController(lambda: [], AsyncMock(side_effect=RuntimeError("camera")))

    await controller.on_roster_changed()

    assert controller.tier_index == 0


async def test_periodic_task_samples_until_stopped():
    link = FakeLink(30)
    controller = QualityController(lambda: [link], AsyncMock(), interval=0.01)

    controller.start()
    await asyncio.sleep(0.05)
    await controller.stop()
    calls = link.calls
    await asyncio.sleep(0.03)

    assert calls >= 2
    assert link.calls == calls
