"""
Server-side sessions in the key-value store.

The Flask session cookie carries only an opaque session ID. The session data
itself is a JSON document at ``SESSION:<session_id>`` that expires after
``SESSION_DURATION`` seconds.
"""

import json
import logging
import uuid
from typing import Any, Optional

import redis
from flask import Flask, Request, Response
from flask.sessions import SessionInterface, SessionMixin
from werkzeug.datastructures import CallbackDict

logger = logging.getLogger(__name__)


class SessionError(RuntimeError):
    """A session could not be loaded or saved."""


def session_key(session_id: str) -> str:
    return f'SESSION:{session_id}'


class SessionStore(object):
    """Stores session documents in Redis."""

    def __init__(self, r: redis.StrictRedis, duration: int = 7200) -> None:
        self.r = r
        self._duration = duration

    @property
    def duration(self) -> int:
        return self._duration

    def load(self, session_id: str) -> Optional[dict]:
        """Load session data, or None if there is no such session."""
        try:
            raw = self.r.get(session_key(session_id))
        except redis.exceptions.RedisError as e:
            raise SessionError(f'Failed to load session: {e}') from e
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.decoder.JSONDecodeError as e:
            raise SessionError('Invalid or corrupted session') from e
        if not isinstance(data, dict):
            raise SessionError('Invalid or corrupted session')
        return data

    def save(self, session_id: str, data: dict) -> None:
        try:
            self.r.set(session_key(session_id), json.dumps(data),
                       ex=self._duration)
        except redis.exceptions.RedisError as e:
            raise SessionError(f'Failed to save session: {e}') from e

    def delete(self, session_id: str) -> None:
        try:
            self.r.delete(session_key(session_id))
        except redis.exceptions.RedisError as e:
            raise SessionError(f'Failed to delete session: {e}') from e


class ServerSideSession(CallbackDict, SessionMixin):
    """A session whose contents live in a :class:`SessionStore`."""

    def __init__(self, initial: Optional[dict] = None,
                 session_id: Optional[str] = None, new: bool = False,
                 unavailable: bool = False) -> None:
        def on_update(self: Any) -> None:
            self.modified = True
        CallbackDict.__init__(self, initial, on_update)
        self.session_id = session_id or str(uuid.uuid4())
        self.new = new
        self.modified = False
        self.unavailable = unavailable
        """Set when the store could not be reached; nothing will be saved."""


class RedisSessionInterface(SessionInterface):
    """Plugs a :class:`SessionStore` into Flask as ``flask.session``."""

    session_class = ServerSideSession

    def __init__(self, store: SessionStore) -> None:
        self.store = store

    def open_session(self, app: Flask, request: Request) -> ServerSideSession:
        session_id = request.cookies.get(self.get_cookie_name(app))
        if not session_id:
            return self.session_class(new=True)
        try:
            data = self.store.load(session_id)
        except SessionError as e:
            logger.error('Could not load session: %s', e)
            return self.session_class(session_id=session_id,
                                      unavailable=True)
        if data is None:
            return self.session_class(new=True)
        return self.session_class(data, session_id=session_id)

    def save_session(self, app: Flask, session: SessionMixin,
                     response: Response) -> None:
        if not isinstance(session, ServerSideSession) or session.unavailable:
            return
        name = self.get_cookie_name(app)
        domain = self.get_cookie_domain(app)
        path = self.get_cookie_path(app)
        if not session:
            if session.modified and not session.new:
                self.store.delete(session.session_id)
                response.delete_cookie(name, domain=domain, path=path)
            return
        if not session.modified and not self.should_set_cookie(app, session):
            return
        self.store.save(session.session_id, dict(session))
        response.set_cookie(
            name,
            session.session_id,
            max_age=self.store.duration,
            httponly=self.get_cookie_httponly(app),
            secure=self.get_cookie_secure(app),
            samesite=self.get_cookie_samesite(app),
            domain=domain,
            path=path
        )
