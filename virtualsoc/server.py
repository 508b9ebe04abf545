"""TCP server for the social network, with UDP discovery on the local network."""

from __future__ import annotations

import argparse
import logging
import selectors
import socket
import threading
from typing import Iterable, List, Optional

from .commands import handle_command
from .database import Database
from .session import Client

log = logging.getLogger(__name__)

DEFAULT_PORT = 9000
DISCOVERY_PORT = 9001
BUFFER_SIZE = 32768
DISCOVERY_QUERY = b"WHO_IS_SERVER"
DISCOVERY_ANSWER = b"SERVER_HERE"

_ACCEPT = "accept"
_DISCOVERY = "discovery"


def discovery_reply(data: bytes) -> Optional[bytes]:
    """The answer to a discovery datagram, or None if it is not a query."""
    return DISCOVERY_ANSWER if DISCOVERY_QUERY in data else None


def split_commands(data: bytes) -> List[str]:
    """Split one read from a client into non-empty command lines."""
    text = data.split(b"\0", 1)[0].decode("utf-8", errors="replace")
    lines = text.split("\n")
    if text.endswith("\n"):
        lines.pop()
    commands = []
    for line in lines:
        if line.endswith("\r"):
            line = line[:-1]
        if line:
            commands.append(line)
    return commands


class Server:
    """Accepts clients, runs their commands and answers discovery queries."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        db_path: str = "virtualsoc.db",
        discovery_port: int = DISCOVERY_PORT,
        host: str = "",
    ) -> None:
        self.clients: List[Client] = []
        self._shutdown = threading.Event()
        self._serving = threading.Lock()
        self._closed = False

        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._udp = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self._listener.bind((host, port))
            self._listener.listen(3)
            self._udp.bind((host, discovery_port))
        except OSError:
            self._listener.close()
            self._udp.close()
            raise

        self.port = self._listener.getsockname()[1]
        self.discovery_port = self._udp.getsockname()[1]
        self.db = Database(db_path)

        self._selector = selectors.DefaultSelector()
        self._selector.register(self._listener, selectors.EVENT_READ, _ACCEPT)
        self._selector.register(self._udp, selectors.EVENT_READ, _DISCOVERY)

    # --- messaging ---

    def send_message(self, client: Client, message: str) -> None:
        """Send text to one client; delivery failures are ignored."""
        try:
            client.conn.sendall(message.encode("utf-8"))
        except OSError:
            pass

    def broadcast_message(self, message: str, exclude: Optional[Client] = None) -> None:
        """Send text to every connected client except ``exclude``."""
        for client in list(self.clients):
            if client is not exclude:
                self.send_message(client, message)

    # --- client bookkeeping ---

    def get_client(self, conn) -> Optional[Client]:
        return next((c for c in self.clients if c.conn is conn), None)

    def get_client_by_username(self, username: str) -> Optional[Client]:
        """The logged-in client with this name, if any."""
        return next(
            (c for c in self.clients if c.is_authenticated and c.username == username),
            None,
        )

    def remove_client(self, conn) -> None:
        """Forget a connection and close it."""
        try:
            self._selector.unregister(conn)
        except (KeyError, ValueError):
            pass
        try:
            conn.close()
        except OSError:
            pass
        self.clients = [c for c in self.clients if c.conn is not conn]

    def handle_data(self, client: Client, data: bytes) -> None:
        """Process one read from a client; empty data means it disconnected."""
        if not data:
            log.info("Client disconnected: %s", client.username)
            self.broadcast_message(f"{client.username} has disconnected.\n", client)
            self.remove_client(client.conn)
            return
        for line in split_commands(data):
            handle_command(line, client, self)

    # --- event loop ---

    def _accept(self) -> None:
        try:
            conn, address = self._listener.accept()
        except OSError as exc:
            log.error("accept: %s", exc)
            return
        client = Client(conn=conn, address=address)
        self.clients.append(client)
        self._selector.register(conn, selectors.EVENT_READ, client)
        log.info("New connection")

    def _answer_discovery(self) -> None:
        try:
            data, address = self._udp.recvfrom(1024)
        except OSError:
            return
        reply = discovery_reply(data)
        if reply is not None:
            self._udp.sendto(reply, address)
            log.info("Discovery request from %s", address[0])

    def _read_client(self, client: Client) -> None:
        try:
            data = client.conn.recv(BUFFER_SIZE - 1)
        except OSError:
            data = b""
        self.handle_data(client, data)

    def _dispatch(self, events: Iterable) -> None:
        for key, _ in events:
            if key.data == _ACCEPT:
                self._accept()
            elif key.data == _DISCOVERY:
                self._answer_discovery()
            elif key.data in self.clients:
                self._read_client(key.data)

    def serve_forever(self) -> None:
        """Serve until :meth:`close` is called."""
        log.info(
            "Listening on TCP port: %d and UDP port: %d", self.port, self.discovery_port
        )
        with self._serving:
            while not self._shutdown.is_set():
                self._dispatch(self._selector.select(timeout=0.2))

    def close(self) -> None:
        """Stop serving and release sockets and the database."""
        if self._closed:
            return
        self._shutdown.set()
        with self._serving:
            self._closed = True
            for client in list(self.clients):
                self.remove_client(client.conn)
            self._selector.close()
            self._listener.close()
            self._udp.close()
            self.db.close()

    def __enter__(self) -> "Server":
        return self

    def __exit__(self, *args) -> None:
        self.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run the social network server.")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--discovery-port", type=int, default=DISCOVERY_PORT)
    parser.add_argument("--db", default="virtualsoc.db")
    parser.add_argument("--host", default="")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        server = Server(args.port, args.db, args.discovery_port, args.host)
    except OSError as exc:
        log.error("Cannot start server: %s", exc)
        return 1
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.close()
    return 0