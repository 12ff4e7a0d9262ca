"""
Connection quality sampling.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional, Tuple

from core.logging import LoggerMixin


INBOUND_RTP = "inbound-rtp"
OUTBOUND_RTP = "outbound-rtp"


@dataclass(frozen=True)
class StatsSnapshot:
    """One poll worth of connection quality metrics."""
    resolution: Optional[str] = None
    fps: Optional[int] = None
    bitrate_kbps: Optional[int] = None
    codec: Optional[str] = None
    rtt_ms: Optional[int] = None
    jitter_ms: Optional[float] = None
    packets_lost: int = 0


@dataclass(frozen=True)
class SamplerState:
    """Byte counter baseline carried from one poll to the next."""
    bytes: int
    time: float


def _field(report: Any, name: str, default: Any = None) -> Any:
    if isinstance(report, Mapping):
        return report.get(name, default)
    return getattr(report, name, default)


def parse_stats(
    reports: Iterable[Any],
    state: Optional[SamplerState],
    now: float,
    rtp_type: str = INBOUND_RTP,
) -> Tuple[StatsSnapshot, Optional[SamplerState]]:
    """Reduce a statistics report to a snapshot.

    ``state`` is the previous sample's byte baseline (``None`` on the first
    poll, in which case the bitrate is reported as unknown). Returns the
    snapshot and the baseline to pass to the next call.
    """
    values = {"packets_lost": 0}
    next_state = state
    bytes_field = "bytesReceived" if rtp_type == INBOUND_RTP else "bytesSent"

    for report in reports:
        report_type = _field(report, "type")

        if report_type == rtp_type and _field(report, "kind") == "video":
            width = _field(report, "frameWidth")
            if width:
                values["resolution"] = f"{width}x{_field(report, 'frameHeight')}"
            frames_per_second = _field(report, "framesPerSecond")
            if frames_per_second:
                values["fps"] = round(frames_per_second)
            if rtp_type == INBOUND_RTP:
                values["packets_lost"] = _field(report, "packetsLost") or 0
                jitter = _field(report, "jitter")
                if jitter:
                    values["jitter_ms"] = round(jitter * 1000, 1)

            current_bytes = _field(report, bytes_field) or 0
            if state is not None and now > state.time:
                elapsed = now - state.time
                values["bitrate_kbps"] = round(8 * (current_bytes - state.bytes) / elapsed / 1000)
            next_state = SamplerState(bytes=current_bytes, time=now)

        elif report_type == "codec":
            mime_type = _field(report, "mimeType") or ""
            if mime_type.startswith("video/"):
                values["codec"] = mime_type[len("video/"):]

        elif report_type == "candidate-pair" and _field(report, "state") == "succeeded":
            rtt = _field(report, "currentRoundTripTime")
            if rtt:
                values["rtt_ms"] = round(rtt * 1000)

    return StatsSnapshot(**values), next_state


class StatsSampler(LoggerMixin):
    """Polls one peer connection's statistics on a fixed interval."""

    def __init__(self, engine, pc, interval: float, on_sample: Callable[[StatsSnapshot], None],
                 rtp_type: str = INBOUND_RTP, clock: Callable[[], float] = time.monotonic):
        super().__init__()
        self.engine = engine
        self.pc = pc
        self.interval = interval
        self.on_sample = on_sample
        self.rtp_type = rtp_type
        self.clock = clock
        self.state: Optional[SamplerState] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if not self.running:
            self._task = asyncio.create_task(self._run())

    def stop(self):
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            if self.engine.connection_state(self.pc) == "closed":
                self.log_debug("📊 [Stats] Connection closed, polling stopped")
                return
            await self.sample()

    async def sample(self) -> Optional[StatsSnapshot]:
        """Take one sample. Failures skip the tick."""
        try:
            reports = await self.engine.get_stats(self.pc)
            snapshot, self.state = parse_stats(reports, self.state, self.clock(), self.rtp_type)
        except Exception as e:
            self.log_debug("📊 [Stats] Sample skipped", {"error": str(e)})
            return None

        self.on_sample(snapshot)
        return snapshot
