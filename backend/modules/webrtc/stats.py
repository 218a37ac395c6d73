"""WebRTC 통계 해석 모듈.

peer connection의 getStats() 결과에서 송신 비디오 측정값과 ICE 후보 쌍 정보를
읽어냅니다. aiortc의 통계 객체(dataclass)와 브라우저 형식의 딕셔너리를 모두
지원합니다.

aiortc는 candidate-pair 통계를 제공하지 않으므로 ICE 전송 계층의 지명된
후보 쌍으로부터 같은 형식의 리포트를 만들어 합칩니다.
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundVideoSample:
    """송신 비디오 통계 한 번의 측정값.

    Attributes:
        fps (float): 초당 프레임 수
        width (Optional[int]): 프레임 가로 해상도
        height (Optional[int]): 프레임 세로 해상도
        bytes_sent (int): 누적 송신 바이트
        timestamp (float): 측정 시각 (초)
    """
    fps: float
    width: Optional[int]
    height: Optional[int]
    bytes_sent: int
    timestamp: float


def _field(report: Any, name: str, default: Any = None) -> Any:
    if isinstance(report, Mapping):
        return report.get(name, default)
    return getattr(report, name, default)


def _timestamp_seconds(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return value.timestamp()
    # W3C 통계 타임스탬프는 밀리초
    return float(value) / 1000.0


def read_outbound_video(reports: Mapping[str, Any], meter: Any = None) -> Optional[OutboundVideoSample]:
    """송신 비디오(outbound-rtp, kind=video) 통계를 읽습니다.

    fps와 해상도가 리포트에 없으면 ``meter``(로컬 비디오 트랙)의 측정값을
    사용합니다.

    Args:
        reports: getStats() 결과 (id → 리포트)
        meter: ``frames_per_second``, ``frame_width``, ``frame_height`` 속성을 가진 객체

    Returns:
        Optional[OutboundVideoSample]: 송신 비디오 리포트가 없으면 None
    """
    for report in reports.values():
        if _field(report, "type") != "outbound-rtp" or _field(report, "kind") != "video":
            continue

        timestamp = _timestamp_seconds(_field(report, "timestamp"))
        if timestamp is None:
            continue

        fps = _field(report, "framesPerSecond")
        width = _field(report, "frameWidth")
        height = _field(report, "frameHeight")
        if meter is not None:
            if fps is None:
                fps = meter.frames_per_second
            if width is None:
                width = meter.frame_width
            if height is None:
                height = meter.frame_height

        return OutboundVideoSample(
            fps=float(fps or 0.0),
            width=width,
            height=height,
            bytes_sent=int(_field(report, "bytesSent", 0) or 0),
            timestamp=timestamp,
        )
    return None


def bitrate_between(previous: Optional[OutboundVideoSample], current: OutboundVideoSample) -> Optional[float]:
    """두 측정값 사이의 순간 비트레이트(bps)를 계산합니다."""
    if previous is None:
        return None
    elapsed = current.timestamp - previous.timestamp
    if elapsed <= 0:
        return None
    return (current.bytes_sent - previous.bytes_sent) * 8 / elapsed


def format_bitrate(bps: float) -> str:
    """비트레이트를 ``2.5Mbps`` / ``850kbps`` 형식으로 표시합니다."""
    if bps >= 1_000_000:
        return f"{bps / 1_000_000:.1f}Mbps"
    return f"{round(bps / 1000)}kbps"


def is_relay_routed(reports: Mapping[str, Any]) -> bool:
    """지명된 성공 후보 쌍의 한쪽이라도 relay 후보인지 확인합니다."""
    for report in reports.values():
        if (_field(report, "type") != "candidate-pair"
                or _field(report, "state") != "succeeded"
                or not _field(report, "nominated")):
            continue

        local = reports.get(_field(report, "localCandidateId"))
        remote = reports.get(_field(report, "remoteCandidateId"))
        if ((local is not None and _field(local, "candidateType") == "relay")
                or (remote is not None and _field(remote, "candidateType") == "relay")):
            return True
    return False


def candidate_pair_reports(pc: Any) -> Dict[str, Dict[str, Any]]:
    """ICE 전송 계층의 지명된 후보 쌍을 candidate-pair 리포트로 변환합니다.

    aiortc 내부 속성(RTCIceTransport._connection, aioice Connection._nominated)에
    의존하므로 구조가 다르면 빈 결과를 반환합니다.
    """
    reports: Dict[str, Dict[str, Any]] = {}
    seen = set()

    for transceiver in pc.getTransceivers():
        dtls = getattr(transceiver.sender, "transport", None)
        ice = getattr(dtls, "transport", None)
        connection = getattr(ice, "_connection", None)
        if connection is None or id(connection) in seen:
            continue
        seen.add(id(connection))

        nominated = getattr(connection, "_nominated", {}) or {}
        for component, pair in nominated.items():
            local = getattr(pair, "local_candidate", None)
            remote = getattr(pair, "remote_candidate", None)
            if local is None or remote is None:
                continue

            pair_id = f"CP{id(connection)}_{component}"
            local_id = f"{pair_id}_local"
            remote_id = f"{pair_id}_remote"
            state = getattr(getattr(pair, "state", None), "name", "")
            reports[pair_id] = {
                "type": "candidate-pair",
                "state": state.lower(),
                "nominated": True,
                "localCandidateId": local_id,
                "remoteCandidateId": remote_id,
            }
            reports[local_id] = {"type": "local-candidate", "candidateType": local.type}
            reports[remote_id] = {"type": "remote-candidate", "candidateType": remote.type}

    return reports
