"""Client-side model of the chat window: protocol commands and reply parsing."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

FEED_PAGE = 0
CHAT_PAGE = 1

PRIVATE_CHATS = 0
GROUP_CHATS = 1

_VISIBILITY_NAMES = ("public", "friends", "close")

_POST_COLOURS = (
    ("[Public]", "#00e676"),
    ("[Friends]", "#40c4ff"),
    ("[Close]", "#ff4081"),
)
_DEFAULT_POST_COLOUR = "white"


class ParseState(Enum):
    """Which block of a server reply the current line belongs to."""

    NONE = 0
    FEED = 1
    FRIENDS = 2
    REQUESTS = 3
    GROUPS = 4


_HEADERS = {
    "--- News Feed ---": ParseState.FEED,
    "--- Friends List ---": ParseState.FRIENDS,
    "--- Friend Requests ---": ParseState.REQUESTS,
    "--- Groups List ---": ParseState.GROUPS,
}


def _post_colour(line: str) -> str:
    return next(
        (colour for label, colour in _POST_COLOURS if label in line),
        _DEFAULT_POST_COLOUR,
    )


def _strip_suffix(item_text: str) -> str:
    """Drop a trailing " (...)" annotation such as " (Close)"."""
    return item_text.split(" (")[0] if " (" in item_text else item_text


@dataclass
class ChatState:
    """Everything the chat window shows, plus the commands its actions send.

    The ``*_command`` methods return the protocol text to send, or None when
    the input is rejected and nothing should be sent.
    """

    username: str = ""
    user_label: str = "Not logged in"
    title: str = ""
    logged_in: bool = False
    refreshing: bool = False

    friends: List[str] = field(default_factory=list)
    requests: List[str] = field(default_factory=list)
    cached_friends: List[str] = field(default_factory=list)
    cached_groups: List[str] = field(default_factory=list)
    chat_list: List[str] = field(default_factory=list)
    posts: List[Tuple[str, str]] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)

    chat_type: int = PRIVATE_CHATS
    page: int = FEED_PAGE
    chat_target: str = ""
    is_group_chat: bool = False
    add_member_visible: bool = False
    chat_label: str = "Select a chat"

    status: str = ""
    status_timeout: int = 0

    def _show(self, message: str, timeout: int = 0) -> None:
        self.status = message
        self.status_timeout = timeout

    # --- account ---

    def login_command(self, username: str, password: str) -> Optional[str]:
        if not username or not password:
            return None
        self.username = username
        return f"LOGIN {username} {password}\n"

    def register_command(self, username: str, password: str) -> Optional[str]:
        if not username or not password:
            return None
        return f"REGISTER {username} {password} 0\n"

    def logout(self) -> str:
        """Return to guest mode; gives the logout and feed requests to send."""
        self.username = ""
        self.cached_friends.clear()
        self.cached_groups.clear()
        self.friends.clear()
        self.requests.clear()
        self.chat_list.clear()
        self.messages.clear()
        self.user_label = "Guest Mode (Not logged in)"
        self.title = "Logged Out"
        self.logged_in = False
        self.add_member_visible = False
        self.refreshing = False
        return "LOGOUT\nFEED\n"

    # --- friends and groups ---

    def add_friend_command(self, target: str, close: bool = False) -> Optional[str]:
        target = target.strip()
        if not target:
            return None
        kind = "close" if close else "normal"
        return f"ADD_FRIEND {target} {kind}\n"

    def create_group_command(self, name: str) -> Optional[str]:
        name = name.strip()
        if not name:
            self._show("Please enter a group name.", 3000)
            return None
        self._show("Request to create group sent...", 2000)
        return f"CREATE_GROUP {name}\n"

    def add_member_command(self, member: str) -> Optional[str]:
        if not self.is_group_chat or not member:
            return None
        self._show(f"Added {member} to group.", 3000)
        return f"ADD_TO_GROUP {self.chat_target} {member.strip()}\n"

    def accept_request_command(self, item_text: str) -> str:
        username = item_text.split(" ")[0]
        self._show(f"Accepting request from {username}...", 2000)
        return f"ACCEPT_REQUEST {username}\n"

    # --- posts ---

    def post_command(self, text: str, visibility: int = 0) -> Optional[str]:
        """Visibility 0 is public, 1 friends, 2 close friends."""
        if not text:
            return None
        name = _VISIBILITY_NAMES[visibility] if 0 <= visibility < 3 else "public"
        return f"POST {name} {text}\nFEED\n"

    def view_posts_command(self, item_text: str) -> str:
        self.page = FEED_PAGE
        target = _strip_suffix(item_text)
        self._show(f"Viewing posts for {target}", 3000)
        return f"VIEW_POSTS {target}\n"

    # --- conversations ---

    def select_chat_type(self, index: int) -> None:
        """Show private chats (0) or groups (1) in the conversation list."""
        self.chat_type = index
        source = self.cached_friends if index == PRIVATE_CHATS else self.cached_groups
        self.chat_list = list(source)

    def select_chat(self, item_text: str) -> None:
        self.page = CHAT_PAGE
        self.messages.clear()
        if self.chat_type == PRIVATE_CHATS:
            self.is_group_chat = False
            self.add_member_visible = False
            self.chat_target = _strip_suffix(item_text)
            self.chat_label = f"Private Chat with: {self.chat_target}"
            return
        self.is_group_chat = True
        self.add_member_visible = True
        parts = item_text.split(":")
        if len(parts) >= 2:
            self.chat_target = parts[0].strip()
            self.chat_label = f"Group Chat: {parts[1].strip()}"
        else:
            self.chat_target = item_text

    def message_command(self, text: str) -> Optional[str]:
        if not text or not self.chat_target:
            return None
        if self.is_group_chat:
            self.messages.append(f"Me (Group): {text}")
            return f"GROUP_MSG {self.chat_target} {text}\n"
        self.messages.append(f"Me: {text}")
        return f"MSG {self.chat_target} {text}\n"

    def refresh_commands(self) -> str:
        return "FEED\nVIEW_FRIENDS\nVIEW_REQUESTS\nVIEW_GROUPS\n"

    # --- server replies ---

    def process_server_message(self, msg: str) -> str:
        """Apply a chunk of server output; returns any text to send back."""
        outgoing: List[str] = []
        state = ParseState.NONE
        for raw in msg.split("\n"):
            line = raw.strip()
            if not line:
                continue

            if line.startswith("[") and ("[Private" in line or "[Group" in line):
                if self.page == CHAT_PAGE:
                    self.messages.append(line)
                else:
                    self._show(f"New message: {line}", 5000)
                continue

            header = _HEADERS.get(line)
            if header is not None:
                state = header
                self._start_block(header)
                continue

            if state is ParseState.NONE:
                self._handle_status_line(line, outgoing)
            elif not line.startswith("---"):
                self._collect(state, line)

        if self.chat_type == PRIVATE_CHATS and self.cached_friends:
            self.chat_list = list(self.cached_friends)
        elif self.chat_type == GROUP_CHATS and self.cached_groups:
            self.chat_list = list(self.cached_groups)
        return "".join(outgoing)

    def _start_block(self, state: ParseState) -> None:
        if state is ParseState.FEED:
            self.posts.clear()
        elif state is ParseState.FRIENDS:
            self.cached_friends.clear()
            self.friends.clear()
        elif state is ParseState.REQUESTS:
            self.requests.clear()
        elif state is ParseState.GROUPS:
            self.cached_groups.clear()

    def _collect(self, state: ParseState, line: str) -> None:
        if state is ParseState.FEED:
            self.posts.append((line, _post_colour(line)))
        elif state is ParseState.FRIENDS:
            self.cached_friends.append(line)
            self.friends.append(line)
        elif state is ParseState.REQUESTS:
            self.requests.append(line)
        elif state is ParseState.GROUPS:
            self.cached_groups.append(line)

    def _handle_status_line(self, line: str, outgoing: List[str]) -> None:
        if "200 OK: Welcome" in line:
            self.user_label = f"User: {self.username}"
            self.logged_in = True
            self.refreshing = True
            self.title = self.username
            outgoing.append(self.refresh_commands())
            self._show("Login successful!", 5000)
        elif "200" in line or "201" in line:
            self._show(line, 4000)
        elif line.startswith(("400", "403", "404")):
            self._show(f"Error: {line}", 5000)