"""Session persistence."""

from openjragent.sessions.manager import SessionManager
from openjragent.sessions.storage import FileSessionStorage, InMemorySessionStorage, SessionData


__all__ = [
    "FileSessionStorage",
    "InMemorySessionStorage",
    "SessionData",
    "SessionManager",
]
