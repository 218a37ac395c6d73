"""릴레이 경로 감지 테스트.

사용법:
    uv run pytest backend/test/test_relay_detector.py
"""

import asyncio

from modules.webrtc.relay import RelayPathDetector


def _reports(local_type="host", remote_type="srflx", state="succeeded", nominated=True):
    return {
        "CP1": {"type": "candidate-pair", "state": state, "nominated": nominated,
                "localCandidateId": "L1", "remoteCandidateId": "R1"},
        "L1": {"type": "local-candidate", "candidateType": local_type},
        "R1": {"type": "remote-candidate", "candidateType": remote_type},
    }


class FakeLink:
    def __init__(self, peer_id, reports):
        self.peer_id = peer_id
        self.reports = reports
        self.is_relay = False
        self.checks = 0

    async def relay_reports(self):
        self.checks += 1
        return self.reports


class SlowLink(FakeLink):
    def __init__(self, peer_id, reports):
        super().__init__(peer_id, reports)
        self.release = asyncio.Event()

    async def relay_reports(self):
        await self.release.wait()
        return self.reports


def _detector(changes=None):
    return RelayPathDetector(interval=60, on_change=(changes.append if changes is not None else None))


async def test_direct_links_are_not_relayed():
    detector = _detector()
    link = FakeLink("a", _reports())
    detector.watch(link)

    assert await detector.check(link) is False
    assert detector.is_relayed is False
    await detector.stop()


async def test_any_relay_link_sets_aggregate_until_removed():
    changes = []
    detector = _detector(changes)
    direct = FakeLink("a", _reports())
    relayed = FakeLink("b", _reports(remote_type="relay"))
    detector.watch(direct)
    detector.watch(relayed)

    await detector.check(direct)
    await detector.check(relayed)
    assert detector.is_relayed is True
    assert relayed.is_relay is True and direct.is_relay is False

    detector.unwatch("b")
    assert detector.is_relayed is False
    assert changes == [True, False]
    await detector.stop()


async def test_local_relay_candidate_counts():
    detector = _detector()
    link = FakeLink("a", _reports(local_type="relay"))
    detector.watch(link)

    assert await detector.check(link) is True
    await detector.stop()


async def test_only_nominated_succeeded_pairs_count():
    detector = _detector()
    pending = FakeLink("a", _reports(local_type="relay", state="in-progress"))
    unnominated = FakeLink("b", _reports(local_type="relay", nominated=False))
    detector.watch(pending)
    detector.watch(unnominated)

    assert await detector.check(pending) is False
    assert await detector.check(unnominated) is False
    assert detector.is_relayed is False
    await detector.stop()


async def test_watch_checks_immediately_and_only_once_per_link():
    detector = _detector()
    link = FakeLink("a", _reports(local_type="relay"))

    detector.watch(link)
    detector.watch(link)
    await asyncio.sleep(0.01)

    assert link.checks == 1
    assert detector.is_relayed is True
    await detector.stop()


async def test_periodic_recheck_detects_path_change():
    detector = RelayPathDetector(interval=0.01)
    link = FakeLink("a", _reports())
    detector.watch(link)
    await asyncio.sleep(0.005)
    assert detector.is_relayed is False

    link.reports = _reports(local_type="relay")
    await asyncio.sleep(0.05)

    assert detector.is_relayed is True
    await detector.stop()


async def test_result_for_removed_link_is_discarded():
    detector = _detector()
    link = SlowLink("a", _reports(local_type="relay"))
    detector.watch(link)

    pending = asyncio.create_task(detector.check(link))
    await asyncio.sleep(0)
    detector.unwatch("a")
    link.release.set()

    assert await pending is None
    assert detector.is_relayed is False
    assert detector.is_watching("a") is False
    await detector.stop()
