"""WebRTC 통계 해석 테스트."""

import datetime
from types import SimpleNamespace

from modules.webrtc.stats import (
    OutboundVideoSample,
    bitrate_between,
    candidate_pair_reports,
    format_bitrate,
    is_relay_routed,
    read_outbound_video,
)


def test_reads_browser_style_report():
    reports = {
        "A": {"type": "inbound-rtp", "kind": "video", "timestamp": 1000.0},
        "B": {"type": "outbound-rtp", "kind": "video", "framesPerSecond": 29.7,
              "frameWidth": 1280, "frameHeight": 720, "bytesSent": 5000, "timestamp": 2000.0},
    }

    sample = read_outbound_video(reports)

    assert sample == OutboundVideoSample(fps=29.7, width=1280, height=720, bytes_sent=5000, timestamp=2.0)


def test_falls_back_to_meter_for_missing_fields():
    report = SimpleNamespace(type="outbound-rtp", kind="video", bytesSent=1200,
                             timestamp=datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc))
    meter = SimpleNamespace(frames_per_second=24.0, frame_width=960, frame_height=540)

    sample = read_outbound_video({"out": report}, meter)

    assert sample.fps == 24.0
    assert (sample.width, sample.height) == (960, 540)
    assert sample.timestamp == report.timestamp.timestamp()


def test_audio_only_reports_yield_nothing():
    reports = {"A": {"type": "outbound-rtp", "kind": "audio", "bytesSent": 10, "timestamp": 1.0}}
    assert read_outbound_video(reports) is None


def test_bitrate_between_samples():
    first = OutboundVideoSample(30, 1280, 720, 0, 10.0)
    second = OutboundVideoSample(30, 1280, 720, 625_000, 12.0)

    assert bitrate_between(None, second) is None
    assert bitrate_between(first, second) == 2_500_000
    assert bitrate_between(second, second) is None


def test_format_bitrate():
    assert format_bitrate(2_500_000) == "2.5Mbps"
    assert format_bitrate(1_000_000) == "1.0Mbps"
    assert format_bitrate(849_600) == "850kbps"


def test_relay_requires_nominated_succeeded_pair():
    reports = {
        "CP": {"type": "candidate-pair", "state": "succeeded", "nominated": True,
               "localCandidateId": "L", "remoteCandidateId": "R"},
        "L": {"type": "local-candidate", "candidateType": "host"},
        "R": {"type": "remote-candidate", "candidateType": "relay"},
    }
    assert is_relay_routed(reports) is True

    reports["CP"]["nominated"] = False
    assert is_relay_routed(reports) is False


def test_candidate_pair_reports_from_ice_transport():
    pair = SimpleNamespace(
        local_candidate=SimpleNamespace(type="relay"),
        remote_candidate=SimpleNamespace(type="host"),
        state=SimpleNamespace(name="SUCCEEDED"),
    )
    connection = SimpleNamespace(_nominated={1: pair})
    ice = SimpleNamespace(_connection=connection)
    sender = SimpleNamespace(transport=SimpleNamespace(transport=ice))
    # BUNDLE: 두 transceiver가 같은 ICE 연결을 공유
    pc = SimpleNamespace(getTransceivers=lambda: [SimpleNamespace(sender=sender), SimpleNamespace(sender=sender)])

    reports = candidate_pair_reports(pc)

    pairs = [r for r in reports.values() if r["type"] == "candidate-pair"]
    assert len(pairs) == 1
    assert pairs[0]["state"] == "succeeded"
    assert is_relay_routed(reports) is True


def test_candidate_pair_reports_without_transport():
    pc = SimpleNamespace(getTransceivers=lambda: [SimpleNamespace(sender=SimpleNamespace(transport=None))])
    assert candidate_pair_reports(pc) == {}
