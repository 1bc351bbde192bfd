"""Per-client key/value storage on top of Flask's signed cookie session.

The session token is the ``session`` cookie issued by Flask; it is only
written back to the client when a value changes.
"""

from datetime import timedelta

from flask import session

SESSION_LIFETIME = timedelta(hours=24)


class SessionStore:
    def get(self, key: str, default: int = 0) -> int:
        try:
            return int(session.get(key, default))
        except (TypeError, ValueError):
            return default

    def put(self, key: str, value: int) -> None:
        session.permanent = True
        session[key] = value
