"""
Configuration management for the FollowCam relay and streaming sessions.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from aiortc import RTCConfiguration, RTCIceServer


DEFAULT_STUN_SERVERS: Tuple[str, ...] = (
    "stun:stun.l.google.com:19302",
    "stun:stun.cloudflare.com:3478",
)


@dataclass(frozen=True)
class VideoConstraints:
    """Requested capture parameters for the video track."""
    width: int
    height: int
    frame_rate: int = 60
    facing_mode: str = "environment"

    def to_player_options(self) -> Dict[str, str]:
        """Translate to ffmpeg/libav device options."""
        return {
            "video_size": f"{self.width}x{self.height}",
            "framerate": str(self.frame_rate),
        }


@dataclass(frozen=True)
class AudioConstraints:
    """Requested capture parameters for the audio track."""
    echo_cancellation: bool = False
    noise_suppression: bool = False
    auto_gain_control: bool = False
    sample_rate: int = 48000
    channel_count: int = 2

    def to_player_options(self) -> Dict[str, str]:
        return {
            "sample_rate": str(self.sample_rate),
            "channels": str(self.channel_count),
        }


# 2K60 first, 1080p60 when the device refuses
HIGH_QUALITY_VIDEO = VideoConstraints(width=2560, height=1440)
FALLBACK_VIDEO = VideoConstraints(width=1920, height=1080)


@dataclass
class RelayConfig:
    """Relay server configuration settings."""

    host: str = "0.0.0.0"
    port: int = 8443
    heartbeat: float = 30.0
    log_level: str = "INFO"
    log_file: str = "followcam_relay.log"

    def __post_init__(self):
        """Initialize configuration from environment variables."""
        self.host = os.environ.get('RELAY_HOST', self.host)
        self.port = int(os.environ.get('PORT', self.port))
        self.heartbeat = float(os.environ.get('RELAY_HEARTBEAT', self.heartbeat))
        self.log_level = os.environ.get('LOG_LEVEL', self.log_level)

    def __str__(self) -> str:
        return f"RelayConfig(host={self.host}, port={self.port})"


@dataclass
class SessionConfig:
    """Client-side signaling and streaming settings."""

    signaling_url: str = "ws://localhost:8443"

    # Timers (seconds)
    reconnect_delay: float = 3.0
    encoder_optimize_delay: float = 1.0
    stats_interval: float = 2.0

    # Encoding
    target_bitrate_kbps: int = 12000  # 12 Mbps for 2K60
    content_hint: str = "detail"
    degradation_preference: str = "maintain-resolution"

    # ICE
    stun_servers: Tuple[str, ...] = DEFAULT_STUN_SERVERS
    turn_url: Optional[str] = None
    turn_username: Optional[str] = None
    turn_password: Optional[str] = None

    # Capture
    video_device: Optional[str] = None
    video_format: Optional[str] = None
    audio_device: Optional[str] = None
    audio_format: Optional[str] = None
    video_constraints: List[VideoConstraints] = field(
        default_factory=lambda: [HIGH_QUALITY_VIDEO, FALLBACK_VIDEO]
    )
    audio_constraints: AudioConstraints = field(default_factory=AudioConstraints)

    rtc_config: Optional[RTCConfiguration] = None

    def __post_init__(self):
        """Initialize configuration from environment variables."""
        self.signaling_url = os.environ.get('SIGNALING_URL', self.signaling_url)

        self.turn_url = os.environ.get('TURN_URL', self.turn_url)
        self.turn_username = os.environ.get('TURN_USERNAME', self.turn_username)
        self.turn_password = os.environ.get('TURN_PASSWORD', self.turn_password)

        self.video_device = os.environ.get('CAPTURE_VIDEO_DEVICE', self.video_device)
        self.video_format = os.environ.get('CAPTURE_VIDEO_FORMAT', self.video_format)
        self.audio_device = os.environ.get('CAPTURE_AUDIO_DEVICE', self.audio_device)
        self.audio_format = os.environ.get('CAPTURE_AUDIO_FORMAT', self.audio_format)

        if 'TARGET_BITRATE_KBPS' in os.environ:
            self.target_bitrate_kbps = int(os.environ['TARGET_BITRATE_KBPS'])

        if self.rtc_config is None:
            self._build_rtc_config()

    def _build_rtc_config(self):
        """Build WebRTC configuration from the STUN/TURN settings."""
        ice_servers = [RTCIceServer(urls=list(self.stun_servers))]

        if self.turn_url:
            ice_servers.append(
                RTCIceServer(
                    urls=self.turn_url,
                    username=self.turn_username,
                    credential=self.turn_password
                )
            )

        self.rtc_config = RTCConfiguration(iceServers=ice_servers)

    @property
    def target_bitrate_bps(self) -> int:
        return self.target_bitrate_kbps * 1000

    def __str__(self) -> str:
        return (
            f"SessionConfig(signaling_url={self.signaling_url}, "
            f"target_bitrate_kbps={self.target_bitrate_kbps}, turn={'yes' if self.turn_url else 'no'})"
        )
