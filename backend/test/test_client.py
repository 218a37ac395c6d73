"""클라이언트 키 명령 테스트."""

import asyncio
from unittest.mock import AsyncMock

from client import handle_command
from modules.webrtc.config import MediaConfig
from modules.webrtc.media import LocalMedia


class FakeTrack:
    def __init__(self, kind):
        self.kind = kind
        self.enabled = True

    def stop(self):
        pass


class FakeOrchestrator:
    def __init__(self):
        self.finished = asyncio.Event()
        self.switch_camera = AsyncMock(return_value=True)


def _media():
    config = MediaConfig(VIDEO_DEVICE="/dev/video0", ALT_VIDEO_DEVICE="/dev/video2",
                         AUDIO_DEVICE="default", VIDEO_FORMAT="v4l2", AUDIO_FORMAT="pulse")
    return LocalMedia(video=FakeTrack("video"), audio=FakeTrack("audio"), config=config)


async def test_m_toggles_mute():
    media, orchestrator = _media(), FakeOrchestrator()

    assert handle_command("m\n", media, orchestrator) is True
    assert media.audio_enabled is False and media.audio.enabled is False

    handle_command("M", media, orchestrator)
    assert media.audio_enabled is True and media.audio.enabled is True


async def test_v_toggles_camera_off():
    media, orchestrator = _media(), FakeOrchestrator()

    handle_command("v\n", media, orchestrator)

    assert media.video_enabled is False and media.video.enabled is False
    assert media.audio_enabled is True


async def test_c_switches_camera_and_q_leaves():
    media, orchestrator = _media(), FakeOrchestrator()

    handle_command("c\n", media, orchestrator)
    await asyncio.sleep(0)
    handle_command("q\n", media, orchestrator)

    orchestrator.switch_camera.assert_awaited_once()
    assert orchestrator.finished.is_set()


async def test_unknown_command_is_ignored():
    media, orchestrator = _media(), FakeOrchestrator()

    assert handle_command("x\n", media, orchestrator) is False
    assert media.audio_enabled is True and media.video_enabled is True
