import re

import pytest

from virtualsoc.commands import handle_command
from virtualsoc.database import Database
from virtualsoc.session import Client


class FakeServer:
    def __init__(self):
        self.db = Database(":memory:")
        self.clients = []
        self.outbox = []

    def connect(self):
        client = Client()
        self.clients.append(client)
        return client

    def send_message(self, client, message):
        self.outbox.append((client, message))

    def broadcast_message(self, message, exclude=None):
        for client in self.clients:
            if client is not exclude:
                self.send_message(client, message)

    def get_client_by_username(self, username):
        for client in self.clients:
            if client.is_authenticated and client.username == username:
                return client
        return None

    def take(self, client):
        mine = [m for c, m in self.outbox if c is client]
        self.outbox = [(c, m) for c, m in self.outbox if c is not client]
        return "".join(mine)


@pytest.fixture
def server():
    srv = FakeServer()
    yield srv
    srv.db.close()


def run(server, client, line):
    handle_command(line, client, server)
    return server.take(client)


def user(server, name, role=0):
    client = server.connect()
    run(server, client, f"REGISTER {name} password {role}")
    run(server, client, f"LOGIN {name} password")
    return client


def test_register_created_then_conflict(server):
    client = server.connect()
    assert run(server, client, "REGISTER alice password 0") == "201 Created: User registered.\n"
    assert run(server, client, "REGISTER alice password 0") == "409 Conflict: Username already exists.\n"


@pytest.mark.parametrize("line", ["REGISTER alice password", "REGISTER alice", "REGISTER alice password admin"])
def test_register_bad_format(server, line):
    client = server.connect()
    assert run(server, client, line) == "400 Bad Request: Format is REGISTER <user> <pass> <role>\n"
    assert server.db.get_user_id("alice") is None


def test_login_success_and_twice(server):
    client = server.connect()
    run(server, client, "REGISTER alice password 0")
    assert run(server, client, "LOGIN alice password") == "200 OK: Welcome alice!\n"
    assert client.is_authenticated and client.username == "alice"
    assert run(server, client, "LOGIN alice password") == "400 Bad Request: Already logged in.\n"


def test_login_wrong_password(server):
    client = server.connect()
    run(server, client, "REGISTER alice password 0")
    assert run(server, client, "LOGIN alice nope") == "401 Unauthorized: Wrong user or pass.\n"
    assert client.is_authenticated is False


def test_trailing_crlf_is_stripped(server):
    client = server.connect()
    assert run(server, client, "FEED\r\n") == "--- News Feed ---\nNo posts yet. Add friends or post something!\n"


def test_unknown_command(server):
    client = server.connect()
    assert run(server, client, "DANCE now") == "400 Unknown Command.\n"
    assert run(server, client, "") == "400 Unknown Command.\n"


@pytest.mark.parametrize(
    "line", ["LOGOUT", "ADD_FRIEND bob", "VIEW_REQUESTS", "ACCEPT_REQUEST bob",
             "POST public hi", "MSG bob hi", "DELETE_USER bob", "DELETE_POST 1"]
)
def test_login_required(server, line):
    client = server.connect()
    assert run(server, client, line) == "403 Forbidden: Login required.\n"


@pytest.mark.parametrize(
    "line", ["CREATE_GROUP club", "ADD_TO_GROUP 1 bob", "GROUP_MSG 1 hi", "VIEW_FRIENDS", "VIEW_GROUPS"]
)
def test_forbidden_for_guests(server, line):
    client = server.connect()
    assert run(server, client, line) == "403 Forbidden\n"


def test_post_and_feed(server):
    alice = user(server, "alice")
    assert run(server, alice, "POST public hello world") == "201 Created.\n"
    feed = run(server, alice, "FEED")
    assert feed.startswith("--- News Feed ---\n")
    assert "alice [Public]: hello world\n" in feed


def test_post_empty(server):
    alice = user(server, "alice")
    assert run(server, alice, "POST public") == "400 Empty post.\n"


def test_view_posts_guest_sees_public_only(server):
    alice = user(server, "alice")
    run(server, alice, "POST friends secret plans")
    run(server, alice, "POST public hi")
    guest = server.connect()
    result = run(server, guest, "VIEW_POSTS alice")
    assert result == "--- Posts for alice ---\n[Public]: hi\n----------------------\n"
    assert run(server, guest, "VIEW_POSTS nobody") == "404 User not found.\n"


def test_friend_request_flow(server):
    alice = user(server, "alice")
    bob = user(server, "bob")
    assert run(server, alice, "ADD_FRIEND bob close") == "200 OK: Friend request sent.\n"
    assert run(server, alice, "ADD_FRIEND bob close") == "400 Error: Request failed (already friends/pending?).\n"
    assert run(server, bob, "VIEW_REQUESTS") == "--- Friend Requests ---\nalice (Close Friend Request)\n"
    assert run(server, bob, "ACCEPT_REQUEST alice") == "200 OK: Request accepted.\n"
    assert run(server, bob, "ACCEPT_REQUEST alice") == "400 Error: No pending request found.\n"
    assert run(server, bob, "VIEW_FRIENDS") == "--- Friends List ---\nalice (Close)\n"
    assert run(server, alice, "VIEW_FRIENDS") == "--- Friends List ---\nbob (Close)\n"


def test_add_friend_unknown_user(server):
    alice = user(server, "alice")
    assert run(server, alice, "ADD_FRIEND ghost") == "404 Not Found.\n"


def test_private_message_online(server):
    alice = user(server, "alice")
    bob = user(server, "bob")
    assert run(server, alice, "MSG bob hello there") == "200 OK: Sent.\n"
    assert server.take(bob) == "[Private from alice]: hello there\n"


def test_private_message_unknown(server):
    alice = user(server, "alice")
    assert run(server, alice, "MSG ghost hi") == "404 User does not exist.\n"


def test_offline_message_delivered_on_login(server):
    alice = user(server, "alice")
    run(server, server.connect(), "REGISTER bob password 0")
    assert run(server, alice, "MSG bob see you") == "200 OK: User offline. Message saved.\n"
    bob = server.connect()
    reply = run(server, bob, "LOGIN bob password")
    assert reply.startswith("200 OK: Welcome bob!\n\n--- You received messages while offline ---\n")
    assert "[OFFLINE Private | alice @ " in reply
    assert "]: see you\n" in reply
    assert reply.endswith("-------------------------------------------\n")
    run(server, bob, "LOGOUT")
    assert run(server, bob, "LOGIN bob password") == "200 OK: Welcome bob!\n"


def test_logout_broadcasts(server):
    alice = user(server, "alice")
    bob = user(server, "bob")
    assert run(server, alice, "LOGOUT") == "200 OK: Logged out.\n"
    assert server.take(bob) == "alice has disconnected.\n"
    assert alice.is_authenticated is False


def _create_group(server, client, name):
    reply = run(server, client, f"CREATE_GROUP {name}")
    match = re.fullmatch(rf"200 OK: Group '{name}' created with ID (\d+)\.\n", reply)
    assert match
    return int(match.group(1))


def test_create_group_membership(server):
    alice = user(server, "alice")
    gid = _create_group(server, alice, "study club")
    assert server.db.is_user_in_group(server.db.get_user_id("alice"), gid)
    assert run(server, alice, "VIEW_GROUPS") == f"--- Groups List ---\n{gid}: study club\n"
    assert run(server, alice, "CREATE_GROUP") == "400 Name required.\n"


def test_add_to_group(server):
    alice = user(server, "alice")
    bob = user(server, "bob")
    gid = _create_group(server, alice, "club")
    assert run(server, bob, f"ADD_TO_GROUP {gid} alice") == "403 You are not in this group.\n"
    assert run(server, alice, f"ADD_TO_GROUP {gid} ghost") == "404 User not found.\n"
    assert run(server, alice, f"ADD_TO_GROUP {gid} bob") == "200 OK: User added.\n"
    assert server.take(bob) == f"Info: You were added to group ID {gid} by alice.\n"
    assert sorted(server.db.get_group_members(gid)) == ["alice", "bob"]


def test_group_message_online_and_offline(server):
    alice = user(server, "alice")
    bob = user(server, "bob")
    run(server, server.connect(), "REGISTER carol password 0")
    gid = _create_group(server, alice, "club")
    run(server, alice, f"ADD_TO_GROUP {gid} bob")
    run(server, alice, f"ADD_TO_GROUP {gid} carol")
    server.take(bob)
    reply = run(server, alice, f"GROUP_MSG {gid} hey all")
    assert reply == "200 OK: Sent to group (stored for offline members).\n"
    assert server.take(bob) == f"[Group {gid}] alice: hey all\n"
    stored = server.db.retrieve_offline_messages(server.db.get_user_id("carol"))
    assert len(stored) == 1
    assert stored[0].startswith(f"[OFFLINE Group {gid} | alice @ ")
    assert stored[0].endswith("]: hey all\n")
    assert server.db.retrieve_offline_messages(server.db.get_user_id("alice")) == []


def test_group_message_non_member(server):
    alice = user(server, "alice")
    bob = user(server, "bob")
    gid = _create_group(server, alice, "club")
    assert run(server, bob, f"GROUP_MSG {gid} hi") == "403 You are not in this group.\n"


def test_delete_user_requires_admin(server):
    alice = user(server, "alice")
    user(server, "bob")
    assert run(server, alice, "DELETE_USER bob") == "403 Forbidden: Admin access required.\n"
    assert server.db.get_user_id("bob") is not None


def test_admin_deletes_online_user(server):
    admin = user(server, "root", role=1)
    bob = user(server, "bob")
    assert run(server, admin, "DELETE_USER bob") == "200 OK: User bob deleted.\n"
    assert server.take(bob) == "You have been banned/deleted by admin.\n"
    assert bob.is_authenticated is False
    assert server.db.get_user_id("bob") is None


def test_delete_post(server):
    alice = user(server, "alice")
    bob = user(server, "bob")
    run(server, alice, "POST public mine")
    assert run(server, alice, "DELETE_POST abc") == "400 Bad Request: Invalid ID format.\n"
    assert run(server, bob, "DELETE_POST 1") == "403 Forbidden or Not Found: You can only delete your own posts.\n"
    assert run(server, alice, "DELETE_POST 1") == "200 OK: Post 1 deleted.\n"
    assert "mine" not in run(server, alice, "FEED")