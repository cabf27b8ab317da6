"""FastAPI application served on the WebSocket port.

Provides:
- /health and /status endpoints
- WebSocket sink at "/" and "/ws" (NMEA text plus vessel JSON)
"""

import logging
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, WebSocket
from starlette.websockets import WebSocketDisconnect

if TYPE_CHECKING:
    from ais_relay.service import RelayService

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def create_app(service: "RelayService") -> FastAPI:
    """Build the HTTP/WebSocket app bound to a relay service."""
    app = FastAPI(
        title=service.settings.app_name,
        description="Status surface and WebSocket sink of the AIS to NMEA 0183 relay.",
        version=VERSION,
    )
    app.state.service = service

    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint for container orchestration."""
        return service.status()

    @app.get("/status")
    async def system_status() -> dict[str, Any]:
        """Detailed relay status: cycle statistics, filters, clients, sources."""
        return {
            "app": service.settings.app_name,
            "version": VERSION,
            **service.get_statistics(),
        }

    async def vessel_stream(websocket: WebSocket) -> None:
        await websocket.accept()
        broadcaster = service.broadcaster
        broadcaster.add_websocket(websocket)
        try:
            # Incoming messages are ignored; this only detects disconnects
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            broadcaster.remove_websocket(websocket)

    app.add_api_websocket_route("/", vessel_stream)
    app.add_api_websocket_route("/ws", vessel_stream)

    return app
