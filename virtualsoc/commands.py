"""Interpretation of the line-based text protocol spoken by clients.

The server object handed to :func:`handle_command` must provide ``db`` (a
:class:`virtualsoc.database.Database`), ``send_message(client, message)``,
``broadcast_message(message, exclude)`` and ``get_client_by_username(name)``.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from functools import wraps
from typing import Callable, Dict

from .session import Client

log = logging.getLogger(__name__)

_WORD = re.compile(r"\s*(\S+)")
_INT = re.compile(r"\s*([+-]?\d+)")
_INT_MIN, _INT_MAX = -(2**31), 2**31 - 1

LOGIN_REQUIRED = "403 Forbidden: Login required.\n"
FORBIDDEN = "403 Forbidden\n"


class _Arguments:
    """Reads whitespace-separated words, integers and the rest of a line."""

    def __init__(self, text: str) -> None:
        self._text = text
        self._pos = 0
        self.failed = False

    def _fail(self) -> None:
        self.failed = True
        self._pos = len(self._text)

    def word(self) -> str:
        if self.failed:
            return ""
        match = _WORD.match(self._text, self._pos)
        if not match:
            self._fail()
            return ""
        self._pos = match.end()
        return match.group(1)

    def integer(self) -> int:
        if self.failed:
            return 0
        match = _INT.match(self._text, self._pos)
        if not match:
            self._fail()
            return 0
        value = int(match.group(1))
        if not _INT_MIN <= value <= _INT_MAX:
            self._fail()
            return 0
        self._pos = match.end()
        return value

    def rest(self) -> str:
        """The remainder of the line with a single leading space dropped."""
        if self.failed or self._pos >= len(self._text):
            return ""
        remainder = self._text[self._pos:]
        self._pos = len(self._text)
        return remainder[1:] if remainder.startswith(" ") else remainder


Handler = Callable[[_Arguments, Client, object], None]
_HANDLERS: Dict[str, Handler] = {}


def _command(name: str, denied: str | None = None):
    """Register a handler; with ``denied`` set, guests get that reply instead."""

    def decorate(func: Handler) -> Handler:
        @wraps(func)
        def wrapper(args: _Arguments, client: Client, server) -> None:
            if denied is not None and not client.is_authenticated:
                server.send_message(client, denied)
                return
            func(args, client, server)

        _HANDLERS[name] = wrapper
        return wrapper

    return decorate


def handle_command(raw_command: str, client: Client, server) -> None:
    """Run one protocol line on behalf of ``client`` and send the replies."""
    if raw_command.endswith("\n"):
        raw_command = raw_command[:-1]
    if raw_command.endswith("\r"):
        raw_command = raw_command[:-1]

    args = _Arguments(raw_command)
    handler = _HANDLERS.get(args.word())
    if handler is None:
        server.send_message(client, "400 Unknown Command.\n")
        return
    handler(args, client, server)


# --- public commands ---


@_command("REGISTER")
def _register(args: _Arguments, client: Client, server) -> None:
    username, password = args.word(), args.word()
    role = args.integer()
    if not username or not password or args.failed:
        server.send_message(
            client, "400 Bad Request: Format is REGISTER <user> <pass> <role>\n"
        )
        return
    if server.db.register_user(username, password, role):
        server.send_message(client, "201 Created: User registered.\n")
    else:
        server.send_message(client, "409 Conflict: Username already exists.\n")


@_command("LOGIN")
def _login(args: _Arguments, client: Client, server) -> None:
    username, password = args.word(), args.word()
    if client.is_authenticated:
        server.send_message(client, "400 Bad Request: Already logged in.\n")
        return
    if server.db.check_login(username, password):
        client.set_username(username)
        server.send_message(client, f"200 OK: Welcome {username}!\n")
    else:
        server.send_message(client, "401 Unauthorized: Wrong user or pass.\n")

    pending = server.db.retrieve_offline_messages(server.db.get_user_id(username))
    if pending:
        server.send_message(client, "\n--- You received messages while offline ---\n")
        for message in pending:
            server.send_message(client, message)
        server.send_message(client, "-------------------------------------------\n")


@_command("VIEW_POSTS")
def _view_posts(args: _Arguments, client: Client, server) -> None:
    target_user = args.word()
    target_id = server.db.get_user_id(target_user)
    my_id = server.db.get_user_id(client.username) if client.is_authenticated else None
    if target_id is None:
        server.send_message(client, "404 User not found.\n")
        return
    posts = server.db.get_posts_for_profile(my_id, target_id)
    server.send_message(
        client, f"--- Posts for {target_user} ---\n{posts}----------------------\n"
    )


@_command("FEED")
def _feed(args: _Arguments, client: Client, server) -> None:
    my_id = server.db.get_user_id(client.username)
    server.send_message(client, server.db.get_news_feed(my_id))


# --- user commands ---


@_command("LOGOUT", LOGIN_REQUIRED)
def _logout(args: _Arguments, client: Client, server) -> None:
    server.broadcast_message(f"{client.username} has disconnected.\n", client)
    client.logout()
    server.send_message(client, "200 OK: Logged out.\n")


@_command("ADD_FRIEND", LOGIN_REQUIRED)
def _add_friend(args: _Arguments, client: Client, server) -> None:
    target_user, kind_name = args.word(), args.word()
    target_id = server.db.get_user_id(target_user)
    my_id = server.db.get_user_id(client.username)
    if target_id is None:
        server.send_message(client, "404 Not Found.\n")
        return
    kind = 1 if kind_name == "close" else 0
    if server.db.send_friend_request(my_id, target_id, kind):
        server.send_message(client, "200 OK: Friend request sent.\n")
    else:
        server.send_message(
            client, "400 Error: Request failed (already friends/pending?).\n"
        )


@_command("VIEW_REQUESTS", LOGIN_REQUIRED)
def _view_requests(args: _Arguments, client: Client, server) -> None:
    my_id = server.db.get_user_id(client.username)
    requests = server.db.get_pending_requests(my_id)
    server.send_message(client, "--- Friend Requests ---\n" + requests)


@_command("ACCEPT_REQUEST", LOGIN_REQUIRED)
def _accept_request(args: _Arguments, client: Client, server) -> None:
    requester_id = server.db.get_user_id(args.word())
    my_id = server.db.get_user_id(client.username)
    if server.db.accept_friend_request(my_id, requester_id):
        server.send_message(client, "200 OK: Request accepted.\n")
    else:
        server.send_message(client, "400 Error: No pending request found.\n")


@_command("POST", LOGIN_REQUIRED)
def _post(args: _Arguments, client: Client, server) -> None:
    visibility_name = args.word()
    content = args.rest()
    if not content:
        server.send_message(client, "400 Empty post.\n")
        return
    visibility = {"friends": 1, "close": 2}.get(visibility_name, 0)
    my_id = server.db.get_user_id(client.username)
    log.info("User %s is posting: %s (Vis: %d)", client.username, content, visibility)
    if server.db.create_post(my_id, content, visibility):
        server.send_message(client, "201 Created.\n")
    else:
        server.send_message(client, "500 Server Error: Could not save post.\n")


@_command("MSG", LOGIN_REQUIRED)
def _message(args: _Arguments, client: Client, server) -> None:
    dest_user = args.word()
    content = args.rest()
    dest = server.get_client_by_username(dest_user)
    if dest is not None:
        server.send_message(dest, f"[Private from {client.username}]: {content}\n")
        server.send_message(client, "200 OK: Sent.\n")
        return
    target_id = server.db.get_user_id(dest_user)
    if target_id is not None:
        server.db.store_offline_message(target_id, client.username, content, False, -1)
        server.send_message(client, "200 OK: User offline. Message saved.\n")
    else:
        server.send_message(client, "404 User does not exist.\n")


@_command("CREATE_GROUP", FORBIDDEN)
def _create_group(args: _Arguments, client: Client, server) -> None:
    name = args.rest()
    if not name:
        server.send_message(client, "400 Name required.\n")
        return
    my_id = server.db.get_user_id(client.username)
    try:
        group_id = server.db.create_group(name, my_id)
    except sqlite3.Error:
        server.send_message(client, "500 Server Error.\n")
        return
    server.db.add_to_group(group_id, my_id)
    server.send_message(
        client, f"200 OK: Group '{name}' created with ID {group_id}.\n"
    )


@_command("ADD_TO_GROUP", FORBIDDEN)
def _add_to_group(args: _Arguments, client: Client, server) -> None:
    group_id = args.integer()
    new_member = args.word()
    my_id = server.db.get_user_id(client.username)
    if not server.db.is_user_in_group(my_id, group_id):
        server.send_message(client, "403 You are not in this group.\n")
        return
    member_id = server.db.get_user_id(new_member)
    if member_id is None:
        server.send_message(client, "404 User not found.\n")
        return
    if server.db.add_to_group(group_id, member_id):
        server.send_message(client, "200 OK: User added.\n")
        dest = server.get_client_by_username(new_member)
        if dest is not None:
            server.send_message(
                dest,
                f"Info: You were added to group ID {group_id} by {client.username}.\n",
            )
    else:
        server.send_message(client, "400 Error (maybe already inside?).\n")


@_command("GROUP_MSG", FORBIDDEN)
def _group_message(args: _Arguments, client: Client, server) -> None:
    group_id = args.integer()
    content = args.rest()
    my_id = server.db.get_user_id(client.username)
    if not server.db.is_user_in_group(my_id, group_id):
        server.send_message(client, "403 You are not in this group.\n")
        return

    formatted = f"[Group {group_id}] {client.username}: {content}\n"
    for member in server.db.get_group_members(group_id):
        if member == client.username:
            continue
        dest = server.get_client_by_username(member)
        if dest is not None:
            server.send_message(dest, formatted)
            continue
        target_id = server.db.get_user_id(member)
        if target_id is not None:
            server.db.store_offline_message(
                target_id, client.username, content, True, group_id
            )
    server.send_message(
        client, "200 OK: Sent to group (stored for offline members).\n"
    )


@_command("VIEW_FRIENDS", FORBIDDEN)
def _view_friends(args: _Arguments, client: Client, server) -> None:
    my_id = server.db.get_user_id(client.username)
    friends = server.db.get_friends_list(my_id)
    server.send_message(client, "--- Friends List ---\n" + friends)


@_command("VIEW_GROUPS", FORBIDDEN)
def _view_groups(args: _Arguments, client: Client, server) -> None:
    my_id = server.db.get_user_id(client.username)
    groups = server.db.get_user_groups(my_id)
    server.send_message(client, "--- Groups List ---\n" + groups)


# --- admin commands ---


@_command("DELETE_USER", LOGIN_REQUIRED)
def _delete_user(args: _Arguments, client: Client, server) -> None:
    my_id = server.db.get_user_id(client.username)
    if not server.db.is_admin(my_id):
        server.send_message(client, "403 Forbidden: Admin access required.\n")
        return
    target_user = args.word()
    if server.db.delete_user(target_user):
        server.send_message(client, f"200 OK: User {target_user} deleted.\n")
        target = server.get_client_by_username(target_user)
        if target is not None:
            server.send_message(target, "You have been banned/deleted by admin.\n")
            target.logout()
    else:
        server.send_message(client, "404 User not found or error deleting.\n")


@_command("DELETE_POST", LOGIN_REQUIRED)
def _delete_post(args: _Arguments, client: Client, server) -> None:
    post_id = args.integer()
    if args.failed:
        server.send_message(client, "400 Bad Request: Invalid ID format.\n")
        return
    my_id = server.db.get_user_id(client.username)
    if server.db.delete_post(post_id, my_id):
        server.send_message(client, f"200 OK: Post {post_id} deleted.\n")
    else:
        server.send_message(
            client,
            "403 Forbidden or Not Found: You can only delete your own posts.\n",
        )