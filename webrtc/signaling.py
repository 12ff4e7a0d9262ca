"""
Client-side signaling session.

Owns the WebSocket to the relay, the local role and stream identity, and the
reconnection policy. Inbound frames are processed strictly in arrival order
and handed to the message handler, which drives the orchestrator.
"""
import asyncio
import secrets
import string
from typing import Any, Callable, Dict, Optional, Set, Union

import websockets

from core.config import SessionConfig
from core.exceptions import CaptureError, SignalingError
from core.logging import LoggerMixin, debug_log
from messaging.codec import MessageCodec, OfferRequest, Seed, SignalingMessage
from webrtc.engine import PeerConnectionEngine
from webrtc.media import LocalMedia, MediaCapture
from webrtc.message_handler import SignalingMessageHandler
from webrtc.peer_manager import ConnectionOrchestrator
from webrtc.state import Role, SessionStatus


STREAM_ID_ALPHABET = string.ascii_lowercase


def generate_stream_id(length: int = 8) -> str:
    """Return a short, shareable lowercase stream id."""
    return ''.join(secrets.choice(STREAM_ID_ALPHABET) for _ in range(length))


class SignalingSession(LoggerMixin):
    """Connection to the relay for one sender or viewer."""

    def __init__(self, config: Optional[SessionConfig] = None,
                 engine: Optional[PeerConnectionEngine] = None,
                 connect: Optional[Callable[..., Any]] = None,
                 capture: Optional[MediaCapture] = None):
        super().__init__()
        self.config = config or SessionConfig()
        self.engine = engine or PeerConnectionEngine(self.config.rtc_config)
        self.capture = capture or MediaCapture(self.config)
        self._connect = connect or websockets.connect

        self.orchestrator = ConnectionOrchestrator(
            self.engine, self.config, self.send, local_media=lambda: self.local_media
        )
        self.message_handler = SignalingMessageHandler(self.orchestrator)

        self.status = SessionStatus.DISCONNECTED
        self.stream_id: Optional[str] = None
        self.role: Optional[Role] = None
        self.local_media: Optional[LocalMedia] = None

        self._ws = None
        self._listen_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._reconnect_enabled = False
        self._generation = 0

        self.callbacks: Dict[str, Set[Callable]] = {
            'status': set(),
            'error': set(),
            'remote_track': set(),
            'stats': set()
        }

        self.orchestrator.add_callback('status', self._set_status)
        self.orchestrator.add_callback('error', lambda message: self._notify('error', message))
        self.orchestrator.add_callback('remote_track', lambda peer_id, track: self._notify('remote_track', peer_id, track))
        self.orchestrator.add_callback('stats', lambda snapshot: self._notify('stats', snapshot))

    def add_callback(self, event: str, callback: Callable):
        """Add a callback for session events (status, error, remote_track, stats)."""
        if event in self.callbacks:
            self.callbacks[event].add(callback)

    def remove_callback(self, event: str, callback: Callable):
        if event in self.callbacks:
            self.callbacks[event].discard(callback)

    @property
    def peer_id(self) -> Optional[str]:
        return self.message_handler.local_peer_id

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def start_camera(self) -> LocalMedia:
        """Open local capture. Raises ``CaptureError`` when every attempt fails."""
        try:
            self.local_media = await self.capture.start_camera()
        except CaptureError as e:
            self._notify('error', e.args[0])
            raise
        return self.local_media

    async def open(self, stream_id: str, role: Union[Role, str]) -> bool:
        """Connect to the relay and announce (sender) or request (viewer) ``stream_id``."""
        role = Role(role)

        current = asyncio.current_task()
        if self._reconnect_task is not None and self._reconnect_task is not current:
            self._reconnect_task.cancel()
        self._reconnect_task = None
        await self._drop_transport()

        self._generation += 1
        generation = self._generation
        self.stream_id = stream_id
        self.role = role
        self.orchestrator.stream_id = stream_id
        self.orchestrator.role = role
        self._reconnect_enabled = True

        self._set_status(SessionStatus.CONNECTING)
        debug_log("🔌 [Signaling] Connecting to signaling server", {"url": self.config.signaling_url})

        try:
            ws = await self._open_transport()
        except SignalingError as e:
            if generation != self._generation:
                return False
            self.log_error(f"❌ [Signaling] {e.args[0]}", e.details)
            self._notify('error', "Signaling connection failed")
            self._set_status(SessionStatus.FAILED)
            self._schedule_reconnect()
            return False

        if generation != self._generation:
            # closed or reopened while connecting
            await ws.close()
            return False

        self._ws = ws
        self._set_status(SessionStatus.CONNECTED)

        if role == Role.SENDER:
            await self.send(Seed(stream_id))
            debug_log("🎥 [Signaling] Seeded stream", {"stream_id": stream_id})
        else:
            await self.send(OfferRequest(stream_id))
            debug_log("📺 [Signaling] Requested stream", {"stream_id": stream_id})

        self._listen_task = asyncio.create_task(self._listen(ws))
        return True

    async def _open_transport(self):
        try:
            return await self._connect(self.config.signaling_url)
        except Exception as e:
            raise SignalingError("WebSocket connection failed", {
                "url": self.config.signaling_url,
                "error": str(e),
                "error_type": type(e).__name__
            }) from e

    async def send(self, message: SignalingMessage) -> bool:
        ws = self._ws
        if ws is None:
            self.log_debug("⚠️ [Signaling] Not connected, message dropped", {"kind": type(message).__name__})
            return False
        try:
            await ws.send(MessageCodec.serialize(message))
            return True
        except Exception as e:
            self.log_warning("⚠️ [Signaling] Send failed", {
                "kind": type(message).__name__,
                "error": str(e)
            })
            return False

    async def _listen(self, ws):
        try:
            async for raw in ws:
                await self.message_handler.handle_message(raw, self.role)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.log_warning("⚠️ [Signaling] WebSocket listener error", {
                "error": str(e),
                "error_type": type(e).__name__
            })
        finally:
            if self._ws is ws:
                self._ws = None
                self._listen_task = None
                debug_log("🔌 [Signaling] WebSocket closed")
                self._set_status(SessionStatus.DISCONNECTED)
                if self._reconnect_enabled:
                    self._schedule_reconnect()

    def _schedule_reconnect(self):
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_after(self.config.reconnect_delay))

    async def _reconnect_after(self, delay: float):
        await asyncio.sleep(delay)
        if not self._reconnect_enabled or not self.stream_id:
            return
        debug_log("🔄 [Signaling] Reconnecting", {"stream_id": self.stream_id, "role": self.role.value})
        await self.open(self.stream_id, self.role)

    async def _drop_transport(self):
        ws, task = self._ws, self._listen_task
        self._ws = None
        self._listen_task = None

        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                self.log_debug("⚠️ [Signaling] Error closing WebSocket", {"error": str(e)})

        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def close(self):
        """Tear the session down; no reconnect can follow."""
        self._reconnect_enabled = False
        self._generation += 1
        if self._reconnect_task is not None and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        await self.orchestrator.close_all()

        if self.local_media is not None:
            self.local_media.stop()
            self.local_media = None

        self.orchestrator.clear()
        await self._drop_transport()

        self.stream_id = None
        self._set_status(SessionStatus.DISCONNECTED)
        debug_log("🔌 [Signaling] Disconnected")

    def _set_status(self, status: SessionStatus):
        self.status = status
        self._notify('status', status)

    def _notify(self, event: str, *args):
        for callback in list(self.callbacks.get(event, ())):
            try:
                callback(*args)
            except Exception as e:
                self.log_error("Error in session callback", {
                    "event": event,
                    "error": str(e)
                })

    def get_status(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'peer_id': self.peer_id,
            'stream_id': self.stream_id,
            'role': self.role.value if self.role else None,
            'connected': self.connected,
            'reconnect_pending': self._reconnect_task is not None and not self._reconnect_task.done(),
            'orchestrator': self.orchestrator.get_status()
        }
