"""로컬 미디어 획득 모듈.

aiortc의 MediaPlayer로 카메라/마이크를 열고, 비디오는 ConstrainedVideoTrack으로
감싸 품질 단계 제약을 적용할 수 있게 합니다.

캡처 실패 원인은 MediaAcquisitionError로 분류되어 사용자에게 보여줄
메시지를 제공합니다.
"""

import errno
import logging
from typing import Callable, List, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer, MediaRelay

from .config import MediaConfig, media_config
from .errors import MediaAcquisitionError, MediaErrorReason
from .quality import QualityTier
from .tracks import ConstrainedVideoTrack, MutableAudioTrack

logger = logging.getLogger(__name__)


def _classify(error: Exception) -> MediaAcquisitionError:
    if isinstance(error, MediaAcquisitionError):
        return error
    if isinstance(error, PermissionError):
        return MediaAcquisitionError(MediaErrorReason.PERMISSION_DENIED, str(error))
    if isinstance(error, FileNotFoundError):
        return MediaAcquisitionError(MediaErrorReason.NOT_FOUND, str(error))
    if isinstance(error, OSError) and error.errno == errno.EBUSY:
        return MediaAcquisitionError(MediaErrorReason.DEVICE_BUSY, str(error))
    return MediaAcquisitionError(MediaErrorReason.OTHER, str(error))


def _is_constraint_error(error: Exception) -> bool:
    # PyAV는 지원하지 않는 video_size/framerate를 EINVAL(ValueError)로 보고함
    return isinstance(error, ValueError) or (isinstance(error, OSError) and error.errno == errno.EINVAL)


def _capture_options(tier: Optional[QualityTier]) -> Optional[dict]:
    if tier is None:
        return None
    return {
        "video_size": f"{tier.width}x{tier.height}",
        "framerate": str(tier.frame_rate),
    }


def open_video_source(
    device: str,
    tier: Optional[QualityTier] = None,
    config: MediaConfig = media_config,
) -> ConstrainedVideoTrack:
    """카메라를 열어 제약 적용 가능한 비디오 트랙을 반환합니다.

    장치가 요청한 해상도/프레임레이트를 거부하면 제약 없이 다시 엽니다.

    Raises:
        MediaAcquisitionError: 카메라를 열 수 없을 때
    """
    try:
        player = MediaPlayer(device, format=config.VIDEO_FORMAT, options=_capture_options(tier))
    except Exception as e:
        if tier is None or not _is_constraint_error(e):
            raise _classify(e) from e
        logger.warning(f"[WebRTC] 캡처 제약 거부됨, 제약 없이 재시도: {e}")
        try:
            player = MediaPlayer(device, format=config.VIDEO_FORMAT)
        except Exception as retry_error:
            raise _classify(retry_error) from retry_error

    if player.video is None:
        raise MediaAcquisitionError(MediaErrorReason.NOT_FOUND, f"No video stream on {device}")

    track = ConstrainedVideoTrack(player.video)
    if tier is not None:
        track.apply_constraints(tier.width, tier.height, tier.frame_rate)
    logger.info(f"[WebRTC] 카메라 열림: {device}")
    return track


def open_audio_source(config: MediaConfig = media_config) -> Optional[MediaStreamTrack]:
    """마이크를 열어 오디오 트랙을 반환합니다. 장치 미설정 시 None.

    Raises:
        MediaAcquisitionError: 마이크를 열 수 없을 때
    """
    if not config.AUDIO_DEVICE:
        return None
    try:
        player = MediaPlayer(config.AUDIO_DEVICE, format=config.AUDIO_FORMAT)
    except Exception as e:
        raise _classify(e) from e
    if player.audio is None:
        raise MediaAcquisitionError(MediaErrorReason.NOT_FOUND, f"No audio stream on {config.AUDIO_DEVICE}")
    logger.info(f"[WebRTC] 마이크 열림: {config.AUDIO_DEVICE}")
    return MutableAudioTrack(player.audio)


class LocalMedia:
    """로컬 참가자의 캡처 트랙 묶음.

    캡처 트랙은 MediaRelay 하나가 읽고, 각 PeerLink에는 ``subscribe()``로 만든
    개별 구독 트랙을 붙입니다. 모든 링크가 같은 프레임을 받고 fps 측정은
    캡처 트랙 한 곳에서 이루어집니다.

    Attributes:
        video (ConstrainedVideoTrack): 현재 송출 중인 비디오 트랙
        audio (Optional[MediaStreamTrack]): 오디오 트랙
        using_alternate_camera (bool): 두 번째 카메라 사용 여부
        audio_enabled (bool): 마이크 송출 여부 (False면 음소거)
        video_enabled (bool): 카메라 송출 여부 (False면 검은 화면)
        on_preview_changed (Optional[Callable]): 로컬 미리보기 트랙 교체 시 호출
    """

    def __init__(
        self,
        video: ConstrainedVideoTrack,
        audio: Optional[MediaStreamTrack] = None,
        config: MediaConfig = media_config,
        opener: Callable[..., ConstrainedVideoTrack] = open_video_source,
    ):
        self.video = video
        self.audio = audio
        self.config = config
        self.using_alternate_camera = False
        self.audio_enabled = True
        self.video_enabled = True
        self.on_preview_changed: Optional[Callable[[ConstrainedVideoTrack], None]] = None
        self._opener = opener
        self._relay = MediaRelay()

    @classmethod
    def acquire(cls, tier: Optional[QualityTier] = None, config: MediaConfig = media_config) -> "LocalMedia":
        """기본 카메라와 마이크를 열어 LocalMedia를 생성합니다.

        Raises:
            MediaAcquisitionError: 장치 획득 실패 (세션 시작 불가)
        """
        video = open_video_source(config.VIDEO_DEVICE, tier, config)
        try:
            audio = open_audio_source(config)
        except MediaAcquisitionError:
            video.stop()
            raise
        return cls(video=video, audio=audio, config=config)

    @property
    def has_alternate_camera(self) -> bool:
        return bool(self.config.ALT_VIDEO_DEVICE)

    @property
    def target_video_device(self) -> str:
        if self.using_alternate_camera and self.config.ALT_VIDEO_DEVICE:
            return self.config.ALT_VIDEO_DEVICE
        return self.config.VIDEO_DEVICE

    def tracks(self) -> List[MediaStreamTrack]:
        return [track for track in (self.audio, self.video) if track is not None]

    def subscribe(self, track: MediaStreamTrack) -> MediaStreamTrack:
        """소비자(PeerLink) 하나를 위한 구독 트랙을 만듭니다."""
        return self._relay.subscribe(track)

    def subscribed_tracks(self) -> List[MediaStreamTrack]:
        """모든 로컬 트랙에 대한 새 구독 트랙 목록 (오디오, 비디오 순)."""
        return [self.subscribe(track) for track in self.tracks()]

    def set_audio_enabled(self, enabled: bool) -> None:
        """마이크 송출을 켜거나 끕니다. 꺼져 있으면 무음을 보냅니다."""
        self.audio_enabled = enabled
        if self.audio is not None:
            self.audio.enabled = enabled
        logger.info(f"[WebRTC] 마이크 {'켜짐' if enabled else '음소거'}")

    def set_video_enabled(self, enabled: bool) -> None:
        """카메라 송출을 켜거나 끕니다. 꺼져 있으면 검은 화면을 보냅니다."""
        self.video_enabled = enabled
        if self.video is not None:
            self.video.enabled = enabled
        logger.info(f"[WebRTC] 카메라 {'켜짐' if enabled else '꺼짐'}")

    def open_target_video(self, tier: Optional[QualityTier] = None) -> ConstrainedVideoTrack:
        """현재 대상 카메라로 새 비디오 트랙을 엽니다."""
        return self._opener(self.target_video_device, tier, self.config)

    def replace_video(self, track: ConstrainedVideoTrack) -> None:
        """로컬 비디오 트랙을 교체하고 이전 트랙을 정지합니다.

        카메라 끄기 상태는 새 트랙에도 이어집니다.
        """
        old = self.video
        track.enabled = self.video_enabled
        self.video = track
        old.stop()
        if self.on_preview_changed:
            self.on_preview_changed(track)

    def stop(self) -> None:
        for track in self.tracks():
            track.stop()
        logger.info("[WebRTC] 로컬 미디어 트랙 정지")
