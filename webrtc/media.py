"""
Local media capture for the sending side.
"""
import asyncio
import platform
from dataclasses import asdict
from typing import Callable, List, Optional, Tuple

from aiortc.contrib.media import MediaPlayer

from core.config import SessionConfig, VideoConstraints
from core.exceptions import CaptureError
from core.logging import LoggerMixin


def default_video_source() -> Tuple[str, Optional[str]]:
    """Return the (device, format) pair for the platform's default camera."""
    system = platform.system()
    if system == "Darwin":
        return "default:none", "avfoundation"
    if system == "Windows":
        return "video=Integrated Camera", "dshow"
    return "/dev/video0", "v4l2"


class LocalMedia:
    """Captured local tracks and the players feeding them."""

    def __init__(self, players: List[MediaPlayer], constraints: VideoConstraints):
        self.players = players
        self.constraints = constraints

    @property
    def tracks(self) -> list:
        tracks = []
        for player in self.players:
            for track in (player.video, player.audio):
                if track is not None:
                    tracks.append(track)
        return tracks

    @property
    def video_tracks(self) -> list:
        return [track for track in self.tracks if track.kind == "video"]

    def stop(self):
        for track in self.tracks:
            track.stop()
        self.players = []


class MediaCapture(LoggerMixin):
    """Opens capture devices with a high-quality request and one fallback."""

    def __init__(self, config: SessionConfig, player_factory: Callable[..., MediaPlayer] = MediaPlayer):
        super().__init__()
        self.config = config
        self.player_factory = player_factory

    def request_media(self, constraints: VideoConstraints) -> LocalMedia:
        """Open the configured devices. Raises ``CaptureError`` on failure."""
        device, device_format = default_video_source()
        if self.config.video_device:
            device, device_format = self.config.video_device, self.config.video_format

        self.log_info("🎥 [Capture] Requesting camera", {
            "device": device,
            "format": device_format,
            "video": asdict(constraints),
            "audio": asdict(self.config.audio_constraints) if self.config.audio_device else None
        })

        players = []
        try:
            players.append(self.player_factory(
                device, format=device_format, options=constraints.to_player_options()
            ))
            if self.config.audio_device:
                players.append(self.player_factory(
                    self.config.audio_device,
                    format=self.config.audio_format,
                    options=self.config.audio_constraints.to_player_options()
                ))
        except Exception as e:
            LocalMedia(players, constraints).stop()
            raise CaptureError("Media request failed", {
                "device": device,
                "constraints": asdict(constraints),
                "error": str(e)
            }) from e

        media = LocalMedia(players, constraints)
        if not media.video_tracks:
            media.stop()
            raise CaptureError("Device produced no video track", {"device": device})

        for track in media.video_tracks:
            if hasattr(track, "contentHint"):
                track.contentHint = self.config.content_hint
                self.log_info("🎥 [Capture] Set video contentHint", {"content_hint": self.config.content_hint})
            self.log_info("🎥 [Capture] Video track settings", {
                "track_id": track.id,
                "width": constraints.width,
                "height": constraints.height,
                "frame_rate": constraints.frame_rate
            })

        return media

    async def start_camera(self) -> LocalMedia:
        """Try each configured constraint set in order; raise when all fail."""
        loop = asyncio.get_running_loop()
        last_error: Optional[CaptureError] = None

        for index, constraints in enumerate(self.config.video_constraints):
            if index > 0:
                self.log_warning(f"🎥 [Capture] Falling back to {constraints.width}x{constraints.height}@{constraints.frame_rate}")
            try:
                return await loop.run_in_executor(None, self.request_media, constraints)
            except CaptureError as e:
                self.log_error("❌ [Capture] Media request failed", e.details)
                last_error = e

        raise CaptureError("Camera access denied or unavailable", {
            "attempts": len(self.config.video_constraints),
            "last_error": str(last_error) if last_error else None
        })
