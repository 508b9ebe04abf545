"""A small social network over TCP: accounts, friends, posts, groups and chat, with a server and a terminal client."""

__version__ = "1.0.0"