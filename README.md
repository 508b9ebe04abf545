# virtualsoc

A small social network for a local network. One machine runs the server,
which keeps its data in an SQLite file. Clients find the server by sending a
UDP broadcast, and then talk to it over TCP with one text command per line.

What you can do:

- register and log in
- send friend requests, marked as normal or close, and accept them
- write posts that are public, for friends, or for close friends only, and
  read a news feed or a single user's posts
- send private messages; if the other user is offline, the message is kept
  and delivered at their next login
- create groups, add members and chat with the group; members who are
  offline get the group messages at their next login

## Installation

```
pip install .
```

There are no dependencies beyond the standard library. To run the tests:

```
pip install ".[test]"
pytest
```

## Running the server

```
virtualsoc-server
```

By default the server listens for TCP connections on port 9000, answers
discovery broadcasts on UDP port 9001 and keeps its data in `virtualsoc.db`
in the current directory. Options:

| Option | Default | Meaning |
| --- | --- | --- |
| `--port` | 9000 | TCP port for clients |
| `--discovery-port` | 9001 | UDP port for discovery queries |
| `--db` | `virtualsoc.db` | path of the SQLite file |
| `--host` | all interfaces | address to bind to |

Stop it with Ctrl-C.

## Running the client

```
virtualsoc-client
```

The client is a terminal program. Without `--host` it broadcasts a
discovery query and connects to the first server that answers. Once
connected it asks for the public news feed and prints everything the server
sends. After you log in it asks for your feed, friends, friend requests and
groups again every few seconds.

| Option | Default | Meaning |
| --- | --- | --- |
| `--host` | found by broadcast | server address |
| `--port` | 9000 | server TCP port |
| `--discovery-port` | 9001 | UDP port the discovery query is sent to |
| `--timeout` | 5.0 | seconds to wait for a discovery answer |
| `--refresh` | 3.0 | seconds between refreshes while logged in |

Inside the client, type:

```
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
/help                      show this list
/quit                      leave
```

Any other text is sent to the open conversation. To open a group, give the
entry as the group list shows it, for example `/open 3: friends`.

## Protocol

Each command is one line of text:

| Command | Meaning |
| --- | --- |
| `REGISTER <user> <pass> <role>` | create an account (role 0 = user, 1 = admin) |
| `LOGIN <user> <pass>` | log in and receive any messages kept while you were away |
| `LOGOUT` | log out |
| `FEED` | the latest 50 posts you are allowed to see |
| `VIEW_POSTS <user>` | one user's posts that you are allowed to see |
| `POST <public\|friends\|close> <text>` | write a post |
| `DELETE_POST <id>` | delete one of your own posts |
| `ADD_FRIEND <user> <normal\|close>` | send a friend request |
| `VIEW_REQUESTS` | list the friend requests waiting for you |
| `ACCEPT_REQUEST <user>` | accept a friend request |
| `VIEW_FRIENDS` | list your friends |
| `MSG <user> <text>` | send a private message |
| `CREATE_GROUP <name>` | create a group; you become its first member |
| `ADD_TO_GROUP <group id> <user>` | add a member to a group you belong to |
| `GROUP_MSG <group id> <text>` | send a message to a group |
| `VIEW_GROUPS` | list your groups |
| `DELETE_USER <user>` | remove an account (admins only) |

`REGISTER`, `LOGIN`, `FEED` and `VIEW_POSTS` work without logging in; the
others need a login. Replies start with a status code in the style of HTTP,
for example `200 OK: Sent.`, `403 Forbidden: Login required.` or
`404 User not found.` Discovery is a UDP datagram containing
`WHO_IS_SERVER`, answered with `SERVER_HERE`.

## Using it as a library

`virtualsoc.database.Database` holds all the stored data. It can be used on
its own, and it works as a context manager:

```python
from virtualsoc.database import Database

password = "password"
with Database(":memory:") as db:
    db.register_user("alice", password, 0)
    alice = db.get_user_id("alice")
    db.create_post(alice, "hello", 0)
    print(db.get_news_feed(alice))
```

`virtualsoc.commands.handle_command(line, client, server)` runs one protocol
line for a `virtualsoc.session.Client`; the server object must provide `db`,
`send_message`, `broadcast_message` and `get_client_by_username`.
`virtualsoc.server.Server` is such an object, with `serve_forever()` and
`close()`.

`virtualsoc.chat.ChatState` holds the client's side of the conversation. It
builds command lines and reads the server's replies without any network:

```python
from virtualsoc.chat import ChatState

state = ChatState()
password = "password"
print(state.login_command("alice", password))   # "LOGIN alice password\n"
state.process_server_message("--- Friends List ---\nbob (Close)\n")
print(state.friends)                              # ["bob (Close)"]
```

`virtualsoc.app.ChatClient` is the terminal client built on it, and
`virtualsoc.app.discover_server()` performs the broadcast lookup.

## What it does not do

- There is no graphical window; the client runs in a terminal.
- Passwords are stored and compared as plain text, and traffic is not
  encrypted. Use it only on a network you trust.
- Messages are only kept for users who are offline; there is no chat
  history for conversations that took place while both sides were online.
- Deleting a user removes the account only; their posts, friendships and
  group memberships stay in the database.