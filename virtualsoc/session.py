"""Per-connection session state kept by the server."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class Client:
    """One connected peer: its socket, its address and who it is logged in as."""

    conn: Any = None
    address: Any = None
    username: str = ""
    is_authenticated: bool = False

    def set_username(self, name: str) -> None:
        """Mark the session as logged in under ``name``."""
        self.username = name
        self.is_authenticated = True

    def logout(self) -> None:
        """Return the session to guest mode."""
        self.username = ""
        self.is_authenticated = False