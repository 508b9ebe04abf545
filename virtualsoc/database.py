"""SQLite storage for users, friendships, posts, groups and offline messages."""

from __future__ import annotations

import os
import sqlite3
from typing import Optional, Union

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS users ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "username TEXT UNIQUE NOT NULL, "
    "password TEXT NOT NULL, "
    "role INTEGER DEFAULT 0);",
    # status: 0 = pending, 1 = accepted; type: 0 = normal, 1 = close friend
    "CREATE TABLE IF NOT EXISTS friendships ("
    "user_id1 INTEGER, "
    "user_id2 INTEGER, "
    "status INTEGER DEFAULT 0, "
    "type INTEGER DEFAULT 0, "
    "PRIMARY KEY(user_id1, user_id2));",
    # visibility: 0 = public, 1 = friends, 2 = close friends
    "CREATE TABLE IF NOT EXISTS posts ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "user_id INTEGER, "
    "content TEXT, "
    "visibility INTEGER DEFAULT 0);",
    'CREATE TABLE IF NOT EXISTS "groups" ('
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "name TEXT NOT NULL, "
    "created_by INTEGER);",
    "CREATE TABLE IF NOT EXISTS group_members ("
    "group_id INTEGER, "
    "user_id INTEGER, "
    "PRIMARY KEY (group_id, user_id), "
    'FOREIGN KEY(group_id) REFERENCES "groups"(id), '
    "FOREIGN KEY(user_id) REFERENCES users(id));",
    "CREATE TABLE IF NOT EXISTS offline_messages ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "target_user_id INTEGER, "
    "sender_name TEXT, "
    "message_content TEXT, "
    "timestamp DATETIME DEFAULT CURRENT_TIMESTAMP, "
    "is_group_msg INTEGER DEFAULT 0, "
    "source_group_id INTEGER DEFAULT -1);",
)

_VISIBILITY_LABELS = {0: "[Public]", 1: "[Friends]", 2: "[Close]"}

_NEWS_FEED_SQL = (
    "SELECT u.username, p.content, p.visibility "
    "FROM posts p "
    "JOIN users u ON p.user_id = u.id "
    "WHERE "
    "   p.visibility = 0 "
    "   OR p.user_id = :me "
    "   OR (p.visibility = 1 AND EXISTS ( "
    "       SELECT 1 FROM friendships f "
    "       WHERE ((f.user_id1 = :me AND f.user_id2 = p.user_id) "
    "           OR (f.user_id2 = :me AND f.user_id1 = p.user_id)) "
    "       AND f.status = 1 "
    "   )) "
    "   OR (p.visibility = 2 AND EXISTS ( "
    "       SELECT 1 FROM friendships f "
    "       WHERE ((f.user_id1 = :me AND f.user_id2 = p.user_id) "
    "           OR (f.user_id2 = :me AND f.user_id1 = p.user_id)) "
    "       AND f.status = 1 AND f.type = 1 "
    "   )) "
    "ORDER BY p.id DESC LIMIT 50;"
)


class Database:
    """The social network's persistent store, backed by one SQLite file."""

    def __init__(self, path: Union[str, os.PathLike] = "virtualsoc.db") -> None:
        self._conn = sqlite3.connect(os.fspath(path), isolation_level=None)
        for statement in _SCHEMA:
            self._conn.execute(statement)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # --- users ---

    def register_user(self, username: str, password: str, role: int = 0) -> bool:
        """Create a user; False if the name is taken. Role 1 is admin."""
        try:
            self._conn.execute(
                "INSERT INTO users (username, password, role) VALUES (?, ?, ?);",
                (username, password, role),
            )
        except sqlite3.IntegrityError:
            return False
        return True

    def check_login(self, username: str, password: str) -> bool:
        row = self._conn.execute(
            "SELECT id FROM users WHERE username = ? AND password = ?;",
            (username, password),
        ).fetchone()
        return row is not None

    def get_user_id(self, username: str) -> Optional[int]:
        """The user's id, or None if there is no such user."""
        row = self._conn.execute(
            "SELECT id FROM users WHERE username = ?;", (username,)
        ).fetchone()
        return row[0] if row else None

    def is_admin(self, user_id: Optional[int]) -> bool:
        row = self._conn.execute(
            "SELECT role FROM users WHERE id = ?;", (user_id,)
        ).fetchone()
        return bool(row) and row[0] == 1

    def delete_user(self, username: str) -> bool:
        """Delete a user by name; True whenever the statement runs."""
        try:
            self._conn.execute("DELETE FROM users WHERE username = ?;", (username,))
        except sqlite3.Error:
            return False
        return True

    # --- friendships ---

    def send_friend_request(
        self, from_id: Optional[int], to_id: Optional[int], kind: int = 0
    ) -> bool:
        """Record a pending request; kind 1 asks for a close friendship."""
        try:
            self._conn.execute(
                "INSERT INTO friendships (user_id1, user_id2, status, type) "
                "VALUES (?, ?, 0, ?);",
                (from_id, to_id, kind),
            )
        except sqlite3.IntegrityError:
            return False
        return True

    def get_pending_requests(self, user_id: Optional[int]) -> str:
        rows = self._conn.execute(
            "SELECT u.username, f.type FROM users u "
            "JOIN friendships f ON u.id = f.user_id1 "
            "WHERE f.user_id2 = ? AND f.status = 0;",
            (user_id,),
        )
        return "".join(
            name + (" (Close Friend Request)" if kind == 1 else "") + "\n"
            for name, kind in rows
        )

    def accept_friend_request(
        self, my_id: Optional[int], requester_id: Optional[int]
    ) -> bool:
        cursor = self._conn.execute(
            "UPDATE friendships SET status = 1 "
            "WHERE user_id1 = ? AND user_id2 = ? AND status = 0;",
            (requester_id, my_id),
        )
        return cursor.rowcount > 0

    def get_friends_list(self, user_id: Optional[int]) -> str:
        rows = self._conn.execute(
            "SELECT u.username, f.type FROM users u "
            "JOIN friendships f ON (u.id = f.user_id1 OR u.id = f.user_id2) "
            "WHERE (f.user_id1 = :me OR f.user_id2 = :me) "
            "AND u.id != :me "
            "AND f.status = 1;",
            {"me": user_id},
        )
        return "".join(
            name + (" (Close)" if kind == 1 else "") + "\n" for name, kind in rows
        )

    # --- groups ---

    def create_group(self, name: str, creator_id: Optional[int]) -> int:
        """Create a group and return its id."""
        cursor = self._conn.execute(
            'INSERT INTO "groups" (name, created_by) VALUES (?, ?);',
            (name, creator_id),
        )
        return cursor.lastrowid

    def add_to_group(self, group_id: Optional[int], user_id: Optional[int]) -> bool:
        """Add a member; adding an existing member is silently accepted."""
        try:
            self._conn.execute(
                "INSERT OR IGNORE INTO group_members (group_id, user_id) VALUES (?, ?);",
                (group_id, user_id),
            )
        except sqlite3.Error:
            return False
        return True

    def is_user_in_group(self, user_id: Optional[int], group_id: Optional[int]) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM group_members WHERE group_id = ? AND user_id = ?;",
            (group_id, user_id),
        ).fetchone()
        return row is not None

    def get_group_members(self, group_id: Optional[int]) -> list[str]:
        rows = self._conn.execute(
            "SELECT u.username FROM users u "
            "JOIN group_members gm ON u.id = gm.user_id "
            "WHERE gm.group_id = ?;",
            (group_id,),
        )
        return [name for (name,) in rows]

    def get_user_groups(self, user_id: Optional[int]) -> str:
        rows = self._conn.execute(
            'SELECT g.id, g.name FROM "groups" g '
            "JOIN group_members gm ON g.id = gm.group_id "
            "WHERE gm.user_id = ?;",
            (user_id,),
        )
        return "".join(f"{gid}: {gname}\n" for gid, gname in rows)

    # --- posts and feed ---

    def create_post(self, user_id: Optional[int], content: str, visibility: int = 0) -> bool:
        try:
            self._conn.execute(
                "INSERT INTO posts (user_id, content, visibility) VALUES (?, ?, ?);",
                (user_id, content, visibility),
            )
        except sqlite3.Error:
            return False
        return True

    def delete_post(self, post_id: int, user_id: Optional[int]) -> bool:
        """Delete a post owned by the user; False if nothing was deleted."""
        cursor = self._conn.execute(
            "DELETE FROM posts WHERE id = ? AND user_id = ?;", (post_id, user_id)
        )
        return cursor.rowcount > 0

    def _relation(self, my_id: Optional[int], target_id: Optional[int]) -> int:
        """-1 none, 0 friends, 1 close friends, 2 self."""
        if my_id == target_id:
            return 2
        row = self._conn.execute(
            "SELECT type FROM friendships "
            "WHERE ((user_id1 = :a AND user_id2 = :b) OR (user_id1 = :b AND user_id2 = :a)) "
            "AND status = 1;",
            {"a": my_id, "b": target_id},
        ).fetchone()
        return row[0] if row else -1

    def get_posts_for_profile(self, my_id: Optional[int], target_id: Optional[int]) -> str:
        """Posts of target that the viewer may see, newest first."""
        relation = self._relation(my_id, target_id)
        rows = self._conn.execute(
            "SELECT content, visibility FROM posts WHERE user_id = ? ORDER BY id DESC;",
            (target_id,),
        )
        lines = []
        for content, vis in rows:
            visible = (
                vis == 0
                or (vis == 1 and relation >= 0)
                or (vis == 2 and relation >= 1)
            )
            if visible:
                label = _VISIBILITY_LABELS.get(vis, "[Close]")
                lines.append(f"{label}: {content}\n")
        return "".join(lines)

    def get_news_feed(self, my_user_id: Optional[int]) -> str:
        """The feed block, at most 50 posts, newest first."""
        feed = ["--- News Feed ---\n"]
        rows = self._conn.execute(_NEWS_FEED_SQL, {"me": my_user_id}).fetchall()
        for author, content, visibility in rows:
            label = _VISIBILITY_LABELS.get(visibility, "[Public]")
            feed.append(f"{author} {label}: {content}\n")
        if not rows:
            feed.append("No posts yet. Add friends or post something!\n")
        return "".join(feed)

    # --- offline messages ---

    def store_offline_message(
        self,
        target_user_id: Optional[int],
        sender_name: str,
        content: str,
        is_group: bool = False,
        group_id: int = -1,
    ) -> None:
        self._conn.execute(
            "INSERT INTO offline_messages "
            "(target_user_id, sender_name, message_content, is_group_msg, source_group_id) "
            "VALUES (?, ?, ?, ?, ?);",
            (target_user_id, sender_name, content, 1 if is_group else 0, group_id),
        )

    def retrieve_offline_messages(self, user_id: Optional[int]) -> list[str]:
        """Return the user's stored messages, oldest first, and remove them."""
        rows = self._conn.execute(
            "SELECT sender_name, message_content, is_group_msg, source_group_id, timestamp "
            "FROM offline_messages WHERE target_user_id = ? ORDER BY id ASC;",
            (user_id,),
        ).fetchall()
        messages = []
        for sender, content, is_group, group_id, stamp in rows:
            if is_group:
                messages.append(
                    f"[OFFLINE Group {group_id} | {sender} @ {stamp}]: {content}\n"
                )
            else:
                messages.append(f"[OFFLINE Private | {sender} @ {stamp}]: {content}\n")
        if messages:
            self._conn.execute(
                "DELETE FROM offline_messages WHERE target_user_id = ?;", (user_id,)
            )
        return messages