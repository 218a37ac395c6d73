"""로컬 미디어 트랙 모듈.

캡처 장치에서 받은 비디오 프레임에 품질 단계의 해상도/프레임레이트 제약을
적용하고, 실제 송출 fps와 해상도를 측정하는 트랙을 제공합니다.

두 트랙 모두 ``enabled`` 플래그를 가지며, 꺼져 있는 동안에는 원본 프레임의
타이밍을 유지한 채 검은 화면(비디오) 또는 무음(오디오) 프레임을 내보냅니다.
"""

import logging
import time
from collections import deque
from typing import Deque, Optional

from aiortc import MediaStreamTrack
from aiortc.mediastreams import MediaStreamError
from av import AudioFrame, VideoFrame

logger = logging.getLogger(__name__)


def blank_video_frame(like: VideoFrame) -> VideoFrame:
    """``like``와 같은 크기/타임스탬프의 검은 yuv420p 프레임을 만듭니다."""
    frame = VideoFrame(width=like.width, height=like.height, format="yuv420p")
    luma, *chroma = frame.planes
    luma.update(bytes(luma.buffer_size))
    for plane in chroma:
        plane.update(bytes([128]) * plane.buffer_size)
    frame.pts = like.pts
    frame.time_base = like.time_base
    return frame


def silent_audio_frame(like: AudioFrame) -> AudioFrame:
    """``like``와 같은 형식/길이/타임스탬프의 무음 프레임을 만듭니다."""
    frame = AudioFrame(format=like.format.name, layout=like.layout.name, samples=like.samples)
    for plane in frame.planes:
        plane.update(bytes(plane.buffer_size))
    frame.sample_rate = like.sample_rate
    frame.pts = like.pts
    frame.time_base = like.time_base
    return frame


class ConstrainedVideoTrack(MediaStreamTrack):
    """해상도/프레임레이트 제약을 적용하는 비디오 트랙.

    원본 트랙의 프레임을 그대로 전달하되, 제약보다 큰 프레임은 비율을 유지한 채
    축소하고 목표 프레임레이트보다 빠르게 들어오는 프레임은 버립니다.
    제약은 "ideal" 값으로 취급되므로 장치가 더 낮은 값을 내면 그대로 둡니다.

    이 트랙의 소비자는 하나(LocalMedia의 MediaRelay)여야 합니다. 링크마다
    직접 ``recv()``를 호출하면 프레임이 링크끼리 나뉘고 fps 측정도 틀어집니다.

    Attributes:
        kind (str): 트랙 종류 ("video")
        source (MediaStreamTrack): 원본 캡처 트랙
        width (Optional[int]): 최대 가로 해상도
        height (Optional[int]): 최대 세로 해상도
        frame_rate (Optional[float]): 최대 프레임레이트
        enabled (bool): False면 검은 프레임 송출

    Examples:
        >>> player = MediaPlayer("/dev/video0", format="v4l2")
        >>> track = ConstrainedVideoTrack(player.video)
        >>> track.apply_constraints(width=1280, height=720, frame_rate=30)
        >>> track.frames_per_second
        0.0
    """
    kind = "video"

    # fps 측정 구간 (초)
    METER_WINDOW = 2.0

    def __init__(
        self,
        source: MediaStreamTrack,
        width: Optional[int] = None,
        height: Optional[int] = None,
        frame_rate: Optional[float] = None,
    ):
        super().__init__()
        self.source = source
        self.width = width
        self.height = height
        self.frame_rate = frame_rate
        self.enabled = True

        self.frame_width: Optional[int] = None
        self.frame_height: Optional[int] = None
        self._last_frame_time: Optional[float] = None
        self._sent_at: Deque[float] = deque()

    def apply_constraints(self, width: int, height: int, frame_rate: float) -> None:
        """새 해상도/프레임레이트 제약을 적용합니다 (best-effort)."""
        self.width = width
        self.height = height
        self.frame_rate = frame_rate
        logger.info(f"[WebRTC] 캡처 제약 적용: {width}x{height}@{frame_rate}")

    @property
    def frames_per_second(self) -> float:
        """최근 측정 구간의 실제 송출 fps."""
        now = time.monotonic()
        while self._sent_at and now - self._sent_at[0] > self.METER_WINDOW:
            self._sent_at.popleft()
        if len(self._sent_at) < 2:
            return 0.0
        elapsed = self._sent_at[-1] - self._sent_at[0]
        if elapsed <= 0:
            return 0.0
        return (len(self._sent_at) - 1) / elapsed

    async def recv(self) -> VideoFrame:
        while True:
            if self.readyState != "live":
                raise MediaStreamError
            frame = await self.source.recv()
            if self._should_drop(frame):
                continue
            break

        frame = self._scale(frame)
        self.frame_width = frame.width
        self.frame_height = frame.height
        self._sent_at.append(time.monotonic())
        if not self.enabled:
            return blank_video_frame(frame)
        return frame

    def stop(self) -> None:
        super().stop()
        self.source.stop()

    def _should_drop(self, frame: VideoFrame) -> bool:
        if not self.frame_rate or frame.time is None:
            return False
        min_interval = 1.0 / self.frame_rate
        # 타임스탬프 흔들림 허용 (10%)
        if self._last_frame_time is not None and frame.time - self._last_frame_time < min_interval * 0.9:
            return True
        self._last_frame_time = frame.time
        return False

    def _scale(self, frame: VideoFrame) -> VideoFrame:
        if not self.width or not self.height:
            return frame
        if frame.width <= self.width and frame.height <= self.height:
            return frame

        ratio = min(self.width / frame.width, self.height / frame.height)
        # yuv420p는 짝수 크기 필요
        target_width = max(2, int(frame.width * ratio) // 2 * 2)
        target_height = max(2, int(frame.height * ratio) // 2 * 2)

        scaled = frame.reformat(width=target_width, height=target_height)
        scaled.pts = frame.pts
        scaled.time_base = frame.time_base
        return scaled


class MutableAudioTrack(MediaStreamTrack):
    """음소거를 지원하는 마이크 트랙.

    Attributes:
        source (MediaStreamTrack): 원본 마이크 트랙
        enabled (bool): False면 무음 프레임 송출
    """
    kind = "audio"

    def __init__(self, source: MediaStreamTrack):
        super().__init__()
        self.source = source
        self.enabled = True

    async def recv(self) -> AudioFrame:
        if self.readyState != "live":
            raise MediaStreamError
        frame = await self.source.recv()
        if not self.enabled:
            return silent_audio_frame(frame)
        return frame

    def stop(self) -> None:
        super().stop()
        self.source.stop()
