"""Terminal chat client: finds the server, sends commands and shows replies."""

from __future__ import annotations

import argparse
import queue
import select
import socket
import sys
import threading
import time
from typing import Callable, Dict, Optional

from .chat import FEED_PAGE, GROUP_CHATS, PRIVATE_CHATS, ChatState
from .server import DEFAULT_PORT, DISCOVERY_ANSWER, DISCOVERY_PORT, DISCOVERY_QUERY

_VISIBILITIES = {"public": 0, "friends": 1, "close": 2}

HELP = """\
Commands:
  /login <user> <pass>       log in
  /register <user> <pass>    create an account
  /logout                    log out
  /friend <user> [close]     send a friend request
  /accept <user>             accept a friend request
  /group <name>              create a group
  /add <user>                add a member to the open group chat
  /post [public|friends|close] <text>
  /posts <user>              show a user's posts
  /chats private|groups      list conversations
  /open <item>               open a conversation from the list
  /back                      back to the feed
  /feed, /refresh            ask the server for fresh data
  /quit                      leave
Any other text is sent to the open conversation.
"""


def discover_server(port: int = DISCOVERY_PORT, timeout: float = 5.0) -> Optional[str]:
    """Broadcast a discovery query and return the first server's address."""
    deadline = time.monotonic() + timeout
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as udp:
            udp.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            udp.bind(("", 0))
            udp.sendto(DISCOVERY_QUERY, ("<broadcast>", port))
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                udp.settimeout(remaining)
                data, address = udp.recvfrom(1024)
                if DISCOVERY_ANSWER in data:
                    return address[0]
    except (socket.timeout, OSError):
        return None


def _words(text: str, count: int) -> list:
    words = text.split()
    return (words + [""] * count)[:count]


class ChatClient:
    """A connection to the server driven by typed lines."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = DEFAULT_PORT,
        refresh_interval: float = 3.0,
    ) -> None:
        self.host = host
        self.port = port
        self.refresh_interval = refresh_interval
        self.state = ChatState()
        self.out = sys.stdout
        self.input = sys.stdin
        self._sock: Optional[socket.socket] = None
        self._running = False
        self._last_refresh = 0.0
        self._shown_status = ""

    # --- connection ---

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self) -> None:
        """Open the TCP connection and ask for the public feed."""
        self._sock = socket.create_connection((self.host, self.port), timeout=10)
        self._sock.settimeout(None)
        self.state.user_label = "Connected as Guest"
        self._status("Connected to server.", 5000)
        self.send("FEED\n")
        self._report()

    def send(self, line: str) -> None:
        """Send protocol text to the server."""
        if self._sock is None:
            raise ConnectionError("not connected to a server")
        if line:
            self._sock.sendall(line.encode("utf-8"))

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None

    def __enter__(self) -> "ChatClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # --- user input ---

    def handle_input(self, line: str) -> str:
        """Act on one typed line; returns the protocol text that was sent."""
        line = line.strip()
        if not line:
            return ""
        if not line.startswith("/"):
            return self._deliver(self.state.message_command(line))

        name, _, rest = line[1:].partition(" ")
        rest = rest.strip()
        name = name.lower()
        if name == "quit":
            self._running = False
            return ""
        if name == "help":
            self._write(HELP)
            return ""
        handler = self._commands().get(name)
        if handler is None:
            self._write(f"Unknown command: /{name} (try /help)\n")
            return ""
        return self._deliver(handler(rest))

    def _commands(self) -> Dict[str, Callable[[str], Optional[str]]]:
        state = self.state
        return {
            "login": lambda rest: state.login_command(*_words(rest, 2)),
            "register": lambda rest: state.register_command(*_words(rest, 2)),
            "logout": lambda rest: state.logout(),
            "friend": self._friend,
            "accept": lambda rest: state.accept_request_command(rest) if rest else None,
            "group": state.create_group_command,
            "add": state.add_member_command,
            "post": self._post,
            "posts": lambda rest: state.view_posts_command(rest) if rest else None,
            "chats": self._chats,
            "open": self._open,
            "back": self._back,
            "feed": lambda rest: "FEED\n",
            "refresh": lambda rest: state.refresh_commands(),
        }

    def _deliver(self, text: Optional[str]) -> str:
        if text:
            self.send(text)
        self._report()
        return text or ""

    def _friend(self, rest: str) -> Optional[str]:
        words = rest.split()
        if not words:
            return None
        close = len(words) > 1 and words[1].lower() == "close"
        return self.state.add_friend_command(words[0], close)

    def _post(self, rest: str) -> Optional[str]:
        first, _, text = rest.partition(" ")
        visibility = _VISIBILITIES.get(first.lower())
        if visibility is None:
            return self.state.post_command(rest, 0)
        return self.state.post_command(text.strip(), visibility)

    def _chats(self, rest: str) -> None:
        index = GROUP_CHATS if rest.lower().startswith("group") else PRIVATE_CHATS
        self.state.select_chat_type(index)
        self._write("".join(f"  {item}\n" for item in self.state.chat_list) or "  (none)\n")
        return None

    def _open(self, rest: str) -> None:
        if rest:
            self.state.select_chat(rest)
            self._write(f"{self.state.chat_label}\n")
        return None

    def _back(self, rest: str) -> None:
        self.state.page = FEED_PAGE
        return None

    # --- server output ---

    def _poll(self, timeout: float = 0.0) -> bool:
        """Handle whatever the server sent; False once the connection is gone."""
        if self._sock is None:
            return False
        ready, _, _ = select.select([self._sock], [], [], timeout)
        if not ready:
            return True
        try:
            data = self._sock.recv(65536)
        except OSError:
            data = b""
        if not data:
            self._on_disconnect()
            return False
        text = data.decode("utf-8", errors="replace")
        self._write(text)
        reply = self.state.process_server_message(text)
        if reply:
            self.send(reply)
            self._last_refresh = time.monotonic()
        self._report()
        return True

    def _maybe_refresh(self) -> None:
        if not self.state.refreshing or self._sock is None:
            return
        now = time.monotonic()
        if now - self._last_refresh >= self.refresh_interval:
            self.send(self.state.refresh_commands())
            self._last_refresh = now

    def _on_disconnect(self) -> None:
        self.close()
        self.state.user_label = "Disconnected"
        self.state.refreshing = False
        self.state.logged_in = False
        self._status("Disconnected from server.", 0)
        self._running = False
        self._report()

    # --- display ---

    def _status(self, message: str, timeout: int) -> None:
        self.state.status = message
        self.state.status_timeout = timeout

    def _report(self) -> None:
        status = self.state.status
        if status and status != self._shown_status:
            self._write(f"* {status}\n")
        self._shown_status = status

    def _write(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()

    # --- main loop ---

    def _read_input(self, lines: "queue.Queue[Optional[str]]") -> None:
        for line in self.input:
            lines.put(line)
        lines.put(None)

    def _drain(self, lines: "queue.Queue[Optional[str]]") -> None:
        while self._running:
            try:
                line = lines.get_nowait()
            except queue.Empty:
                return
            if line is None:
                self._running = False
                return
            self.handle_input(line)

    def run(self) -> None:
        """Read typed lines and server output until quit, end of input or disconnect."""
        if self._sock is None:
            self.connect()
        lines: "queue.Queue[Optional[str]]" = queue.Queue()
        threading.Thread(target=self._read_input, args=(lines,), daemon=True).start()
        self._running = True
        while self._running:
            try:
                self._drain(lines)
                if not self._running or not self._poll(0.1):
                    break
                self._maybe_refresh()
            except OSError:
                self._on_disconnect()
                break


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Chat with the social network server.")
    parser.add_argument("--host", default="", help="server address; found by broadcast if omitted")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--discovery-port", type=int, default=DISCOVERY_PORT)
    parser.add_argument("--timeout", type=float, default=5.0)
    parser.add_argument("--refresh", type=float, default=3.0)
    args = parser.parse_args(argv)

    host = args.host
    if not host:
        print("Looking for server in local network...")
        host = discover_server(args.discovery_port, args.timeout)
        if host is None:
            print("No server found on the local network.", file=sys.stderr)
            return 1
        print(f"Found server at: {host}")

    client = ChatClient(host, args.port, args.refresh)
    try:
        client.connect()
    except OSError as exc:
        print(f"Cannot connect to {host}:{args.port}: {exc}", file=sys.stderr)
        return 1
    try:
        client.run()
    except KeyboardInterrupt:
        pass
    finally:
        client.close()
    return 0