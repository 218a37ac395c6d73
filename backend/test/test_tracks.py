"""로컬 미디어 트랙 테스트 (제약 적용 비디오, 음소거 오디오)."""

from fractions import Fraction

import pytest
from aiortc.mediastreams import MediaStreamError
from av import AudioFrame, VideoFrame

from modules.webrtc.tracks import ConstrainedVideoTrack, MutableAudioTrack

TIME_BASE = Fraction(1, 90000)


class FrameSource:
    """고정 간격으로 프레임을 내는 원본 트랙 대역."""

    kind = "video"

    def __init__(self, width, height, fps, count):
        self.width = width
        self.height = height
        self.step = int(90000 / fps)
        self.count = count
        self.pts = 0
        self.last = None
        self.stopped = False

    async def recv(self):
        frame = VideoFrame(width=self.width, height=self.height, format="yuv420p")
        frame.pts = self.pts
        frame.time_base = TIME_BASE
        self.pts += self.step
        self.last = frame
        return frame

    def stop(self):
        self.stopped = True


async def test_frames_above_constraint_are_scaled_down():
    track = ConstrainedVideoTrack(FrameSource(1920, 1080, 30, 10))
    track.apply_constraints(1280, 720, 30)

    frame = await track.recv()

    assert (frame.width, frame.height) == (1280, 720)
    assert frame.pts == 0
    assert (track.frame_width, track.frame_height) == (1280, 720)


async def test_smaller_frames_pass_through():
    track = ConstrainedVideoTrack(FrameSource(640, 360, 30, 10), width=1280, height=720, frame_rate=30)

    frame = await track.recv()

    assert (frame.width, frame.height) == (640, 360)


async def test_frame_rate_constraint_drops_excess_frames():
    source = FrameSource(640, 360, 60, 10)
    track = ConstrainedVideoTrack(source, frame_rate=30)

    first = await track.recv()
    second = await track.recv()

    # 60fps 원본에서 30fps 제약이면 한 프레임씩 건너뜀
    assert second.pts - first.pts == 2 * source.step


async def test_stop_stops_source():
    source = FrameSource(640, 360, 30, 1)
    track = ConstrainedVideoTrack(source)

    track.stop()

    assert source.stopped is True
    assert track.readyState == "ended"


class ToneSource:
    """값이 채워진 s16 모노 오디오 프레임을 내는 마이크 대역."""

    kind = "audio"

    def __init__(self):
        self.pts = 0
        self.stopped = False

    async def recv(self):
        frame = AudioFrame(format="s16", layout="mono", samples=960)
        for plane in frame.planes:
            plane.update(bytes([0x10]) * plane.buffer_size)
        frame.sample_rate = 48000
        frame.pts = self.pts
        frame.time_base = Fraction(1, 48000)
        self.pts += 960
        return frame

    def stop(self):
        self.stopped = True


async def test_disabled_video_sends_black_frames_with_source_timing():
    source = FrameSource(640, 360, 30, 10)
    track = ConstrainedVideoTrack(source)
    await track.recv()

    track.enabled = False
    frame = await track.recv()

    assert (frame.width, frame.height) == (640, 360)
    assert frame.pts == source.step
    assert frame.format.name == "yuv420p"
    luma, cb, cr = frame.planes
    assert set(bytes(luma)) == {0}
    assert set(bytes(cb)) == {128} and set(bytes(cr)) == {128}
    # 꺼져 있어도 송출 fps 측정은 계속됨
    assert len(track._sent_at) == 2


async def test_reenabled_video_passes_source_frames_again():
    track = ConstrainedVideoTrack(FrameSource(640, 360, 30, 10))
    track.enabled = False
    await track.recv()

    track.enabled = True
    frame = await track.recv()

    assert frame is track.source.last


async def test_stopped_video_track_refuses_frames():
    track = ConstrainedVideoTrack(FrameSource(640, 360, 30, 1))
    track.stop()

    with pytest.raises(MediaStreamError):
        await track.recv()


async def test_muted_audio_sends_silence():
    source = ToneSource()
    track = MutableAudioTrack(source)

    live = await track.recv()
    track.enabled = False
    muted = await track.recv()

    assert set(bytes(live.planes[0])) == {0x10}
    assert set(bytes(muted.planes[0])) == {0}
    assert muted.samples == 960
    assert muted.sample_rate == 48000
    assert muted.pts == 960
    assert muted.format.name == "s16" and muted.layout.name == "mono"


def test_audio_stop_stops_microphone():
    source = ToneSource()
    track = MutableAudioTrack(source)

    track.stop()

    assert source.stopped is True
    assert track.readyState == "ended"
