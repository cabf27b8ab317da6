"""Client fan-out over TCP, WebSocket and UDP.

Provides:
- NMEA TCP server with a "just connected" client set
- WebSocket client registry (sentences and vessel JSON)
- Fire-and-forget UDP forwarding
"""

import asyncio
import logging
from typing import Any, Iterable, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

logger = logging.getLogger(__name__)

LINE_ENDING = "\r\n"
WRITE_TIMEOUT = 5.0


def _peer(writer: asyncio.StreamWriter) -> str:
    peer = writer.get_extra_info("peername")
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer)


class _ForwarderProtocol(asyncio.DatagramProtocol):
    def error_received(self, exc: Exception) -> None:
        logger.warning(f"UDP forwarder error: {exc}")


class Broadcaster:
    """Owns every client collection and writes sentences to them.

    All collections are only touched from the event loop thread, so accept
    handlers and the update tick never race.
    """

    def __init__(
        self,
        tcp_host: str = "0.0.0.0",
        tcp_port: int = 10113,
        forward_host: Optional[str] = None,
        forward_port: Optional[int] = None,
    ):
        self.tcp_host = tcp_host
        self.tcp_port = tcp_port
        self.forward_host = forward_host
        self.forward_port = forward_port

        self.tcp_clients: set[asyncio.StreamWriter] = set()
        self.ws_clients: set[WebSocket] = set()
        self._new_clients: set[Any] = set()

        self._tcp_server: Optional[asyncio.AbstractServer] = None
        self._udp_transport: Optional[asyncio.DatagramTransport] = None

    # ==================== TCP ====================

    async def start_tcp(self) -> bool:
        """Start the NMEA TCP listener.

        Returns:
            True when listening, False if the port could not be bound
        """
        try:
            self._tcp_server = await asyncio.start_server(
                self._handle_tcp_client, self.tcp_host, self.tcp_port
            )
        except OSError as e:
            logger.error(f"Could not start TCP server on port {self.tcp_port}: {e}")
            return False

        # Resolve the real port when bound to 0
        self.tcp_port = self._tcp_server.sockets[0].getsockname()[1]
        logger.info(f"NMEA TCP server listening on {self.tcp_host}:{self.tcp_port}")
        return True

    async def _handle_tcp_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = _peer(writer)
        logger.info(f"TCP client connected: {peer}")
        self.tcp_clients.add(writer)
        self._new_clients.add(writer)

        try:
            # Clients never send anything meaningful; read until EOF
            while await reader.read(1024):
                pass
        except (ConnectionError, OSError) as e:
            logger.warning(f"TCP socket error from {peer}: {e}")
        finally:
            self._drop_tcp_client(writer)
            logger.info(f"TCP client disconnected: {peer}")

    def _drop_tcp_client(self, writer: asyncio.StreamWriter) -> None:
        self.tcp_clients.discard(writer)
        self._new_clients.discard(writer)
        if not writer.is_closing():
            writer.close()

    async def broadcast_tcp(self, sentence: str) -> int:
        """Write one sentence to every TCP client.

        Returns:
            Number of clients the sentence was delivered to
        """
        data = (sentence + LINE_ENDING).encode("ascii")
        delivered = 0
        for writer in list(self.tcp_clients):
            try:
                writer.write(data)
                await asyncio.wait_for(writer.drain(), timeout=WRITE_TIMEOUT)
                delivered += 1
            except (ConnectionError, OSError, asyncio.TimeoutError) as e:
                logger.warning(f"Error broadcasting to TCP client {_peer(writer)}: {e!r}")
                self._drop_tcp_client(writer)
        return delivered

    # ==================== WebSocket ====================

    def add_websocket(self, websocket: WebSocket) -> None:
        self.ws_clients.add(websocket)
        self._new_clients.add(websocket)
        logger.info(f"WebSocket client connected ({len(self.ws_clients)} total)")

    def remove_websocket(self, websocket: WebSocket) -> None:
        if websocket in self.ws_clients:
            self.ws_clients.discard(websocket)
            logger.info(f"WebSocket client disconnected ({len(self.ws_clients)} total)")
        self._new_clients.discard(websocket)

    async def _send_ws(self, websocket: WebSocket, text: Optional[str], data: Any) -> bool:
        try:
            if text is not None:
                await websocket.send_text(text)
            else:
                await websocket.send_json(data)
            return True
        except (WebSocketDisconnect, RuntimeError, ConnectionError) as e:
            logger.warning(f"Error broadcasting to WebSocket client: {e!r}")
            self.remove_websocket(websocket)
            return False

    async def broadcast_websocket(self, sentence: str) -> int:
        """Send one NMEA sentence to every WebSocket client."""
        delivered = 0
        for websocket in list(self.ws_clients):
            delivered += await self._send_ws(websocket, sentence, None)
        return delivered

    async def broadcast_websocket_json(self, data: dict[str, Any]) -> int:
        """Send a JSON document (merged vessel record) to every WebSocket client."""
        delivered = 0
        for websocket in list(self.ws_clients):
            delivered += await self._send_ws(websocket, None, data)
        return delivered

    # ==================== UDP ====================

    async def start_udp(self) -> bool:
        """Open the UDP socket to the forwarding collaborator."""
        if not self.forward_host or not self.forward_port:
            return False
        loop = asyncio.get_running_loop()
        try:
            self._udp_transport, _ = await loop.create_datagram_endpoint(
                _ForwarderProtocol,
                remote_addr=(self.forward_host, self.forward_port),
            )
        except OSError as e:
            logger.error(
                f"Could not open UDP forwarding to {self.forward_host}:{self.forward_port}: {e}"
            )
            return False
        logger.info(f"UDP forwarding enabled: {self.forward_host}:{self.forward_port}")
        return True

    def send_udp(self, sentence: str) -> bool:
        if self._udp_transport is None:
            return False
        try:
            self._udp_transport.sendto((sentence + LINE_ENDING).encode("ascii"))
        except OSError as e:
            logger.warning(f"Error sending to UDP forwarder: {e}")
            return False
        return True

    # ==================== Bookkeeping ====================

    @property
    def has_new_clients(self) -> bool:
        return bool(self._new_clients)

    def pending_new_clients(self) -> frozenset:
        """Snapshot of clients attached since the last cycle."""
        return frozenset(self._new_clients)

    def clear_new_clients(self, clients: Optional[Iterable[Any]] = None) -> None:
        """Forget the given new clients, or all of them."""
        if clients is None:
            self._new_clients.clear()
        else:
            self._new_clients.difference_update(clients)

    @property
    def tcp_running(self) -> bool:
        return self._tcp_server is not None and self._tcp_server.is_serving()

    @property
    def udp_running(self) -> bool:
        return self._udp_transport is not None and not self._udp_transport.is_closing()

    @property
    def client_count(self) -> int:
        return len(self.tcp_clients) + len(self.ws_clients)

    def get_statistics(self) -> dict[str, Any]:
        return {
            "tcp_clients": len(self.tcp_clients),
            "websocket_clients": len(self.ws_clients),
            "new_clients": len(self._new_clients),
            "tcp_running": self.tcp_running,
            "udp_running": self.udp_running,
        }

    async def stop(self) -> None:
        """Close listeners, destroy every client and the UDP socket."""
        if self._tcp_server is not None:
            self._tcp_server.close()

        for writer in list(self.tcp_clients):
            self._drop_tcp_client(writer)

        for websocket in list(self.ws_clients):
            try:
                await websocket.close()
            except (RuntimeError, ConnectionError) as e:
                logger.debug(f"WebSocket close failed: {e!r}")
            self.remove_websocket(websocket)

        if self._tcp_server is not None:
            await self._tcp_server.wait_closed()
            self._tcp_server = None

        if self._udp_transport is not None:
            self._udp_transport.close()
            self._udp_transport = None

        self._new_clients.clear()
        logger.info("Broadcaster stopped")
