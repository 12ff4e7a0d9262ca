"""
FollowCam signaling relay.

aiohttp WebSocket server that assigns peer ids, feeds inbound frames to the
relay directory and delivers the resulting messages to their target peers.
"""
import asyncio
from typing import Any, Dict, Optional

from aiohttp import WSMsgType, web

from core.config import RelayConfig
from core.exceptions import MessageError
from core.logging import debug_log, setup_logging
from messaging.codec import MessageCodec, SignalingMessage, UuidAssign
from services.relay import RelayServer


class SignalingRelayServer:
    """Owns the relay directory and the live WebSocket for each peer."""

    def __init__(self, config: Optional[RelayConfig] = None, relay: Optional[RelayServer] = None):
        self.config = config or RelayConfig()
        self.relay = relay or RelayServer()
        self.sockets: Dict[str, web.WebSocketResponse] = {}

        debug_log("🚀 [Server] Signaling relay initialized", {"config": str(self.config)})

    async def handle_connection(self, ws: web.WebSocketResponse):
        """Serve one peer until its socket closes."""
        peer_id = self.relay.on_connect()
        self.sockets[peer_id] = ws

        # identity goes out before anything else
        await self.send(peer_id, UuidAssign(peer_id))

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self.handle_frame(peer_id, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    debug_log("⚠️ [Server] WebSocket error", {
                        "peer_id": peer_id,
                        "error": str(ws.exception())
                    }, "WARNING")
                    break
        finally:
            self.sockets.pop(peer_id, None)
            self.relay.on_disconnect(peer_id)

    async def handle_frame(self, peer_id: str, raw: str):
        try:
            message = MessageCodec.parse(raw)
        except MessageError as e:
            debug_log(f"❌ [Server] Parse error from {peer_id}", {
                "error": str(e),
                "frame": raw[:100]
            }, "WARNING")
            return

        for outbound in self.relay.handle(peer_id, message):
            await self.send(outbound.target, outbound.message)

    async def send(self, peer_id: str, message: SignalingMessage) -> bool:
        ws = self.sockets.get(peer_id)
        if ws is None or ws.closed:
            return False
        try:
            await ws.send_str(MessageCodec.serialize(message))
            return True
        except Exception as e:
            debug_log("❌ [Server] Failed to send message to peer", {
                "peer_id": peer_id,
                "error": str(e),
                "error_type": type(e).__name__
            }, "WARNING")
            return False

    def get_server_status(self) -> Dict[str, Any]:
        return {
            'open_sockets': len(self.sockets),
            'relay': self.relay.get_status()
        }

    async def cleanup(self):
        """Close every peer socket."""
        debug_log("🧹 [Server] Cleaning up server")
        for ws in list(self.sockets.values()):
            await ws.close()
        self.sockets.clear()
        debug_log("🧹 [Server] Server cleanup completed")


SERVER_KEY = web.AppKey("server", SignalingRelayServer)


async def handle_websocket(request):
    """Handle signaling WebSocket connections."""
    server = request.app[SERVER_KEY]
    ws = web.WebSocketResponse(heartbeat=server.config.heartbeat)
    await ws.prepare(request)

    debug_log("🔌 [WebSocket] Peer connected", {"remote": request.remote})
    await server.handle_connection(ws)
    return ws


async def handle_status(request):
    """Handle status request."""
    server = request.app[SERVER_KEY]
    return web.json_response(server.get_server_status())


async def _on_shutdown(app):
    await app[SERVER_KEY].cleanup()


def create_app(config: Optional[RelayConfig] = None) -> web.Application:
    app = web.Application()
    app[SERVER_KEY] = SignalingRelayServer(config)

    app.router.add_get("/", handle_websocket)
    app.router.add_get("/ws", handle_websocket)
    app.router.add_get("/status", handle_status)
    app.on_shutdown.append(_on_shutdown)
    return app


async def main():
    """Main server function."""
    config = RelayConfig()
    setup_logging(level=config.log_level, log_file=config.log_file)
    debug_log("🚀 [Main] Starting FollowCam signaling relay")

    app = create_app(config)
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.host, config.port)
    try:
        await site.start()
        debug_log(f"✅ [Main] Signaling relay running on ws://{config.host}:{config.port}")

        # Run forever
        await asyncio.Future()
    finally:
        await runner.cleanup()
        debug_log("✅ [Main] Server closed")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n🛑 Shutting down...")


if __name__ == "__main__":
    run()
