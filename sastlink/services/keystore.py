"""
Short-lived verification artifacts in the key-value store.

Three kinds of keys are kept, all derived from the username:

- ``TICKET:<purpose>:<username>`` is a hash with the ticket and its status
  (``issued`` until the verification code is confirmed, then ``verified``).
- ``VERIFY_CODE:<username>`` holds the six-digit code sent by email.
- ``LOGIN_TOKEN:<uid>`` holds the user's current login token.

Every key expires on its own; nothing here is meant to outlive a login.
"""

import logging
import secrets
from typing import Any, Mapping, Optional

import fakeredis
import redis

logger = logging.getLogger(__name__)

ISSUED = 'issued'
VERIFIED = 'verified'


class KeyStoreError(RuntimeError):
    """The key-value store could not be reached or returned garbage."""


def get_redis(config: Mapping[str, Any]) -> redis.StrictRedis:
    """Get a new connection to Redis, or to FakeRedis if so configured."""
    if config.get('REDIS_FAKE'):
        logger.debug('Using FakeRedis')
        return fakeredis.FakeStrictRedis(server=fakeredis.FakeServer(),
                                         decode_responses=True)
    host = config.get('REDIS_HOST', 'localhost')
    port = int(config.get('REDIS_PORT', '6379'))
    db = int(config.get('REDIS_DATABASE', '0'))
    logger.debug('New Redis connection at %s, port %s', host, port)
    return redis.StrictRedis(host=host, port=port, db=db,
                             password=config.get('REDIS_TOKEN'),
                             decode_responses=True)


def ticket_key(purpose: str, username: str) -> str:
    return f'TICKET:{purpose}:{username}'


def verify_code_key(username: str) -> str:
    return f'VERIFY_CODE:{username}'


def login_token_key(uid: str) -> str:
    return f'LOGIN_TOKEN:{uid}'


def generate_code(length: int = 6) -> str:
    """Generate a numeric verification code."""
    return ''.join(str(secrets.randbelow(10)) for _ in range(length))


class KeyStore(object):
    """
    Manages verification artifacts in Redis.

    The StrictRedis instance is thread safe and connections are attached at
    the time a command is executed, so a single instance is shared by the
    whole application.
    """

    def __init__(self, r: redis.StrictRedis, ticket_expires: int = 300,
                 code_expires: int = 300,
                 login_expires: int = 604800) -> None:
        self.r = r
        self._ticket_expires = ticket_expires
        self._code_expires = code_expires
        self._login_expires = login_expires

    def save_ticket(self, purpose: str, username: str, ticket: str) -> None:
        """Store a freshly issued ticket, replacing any previous one."""
        key = ticket_key(purpose, username)
        try:
            pipe = self.r.pipeline()
            pipe.delete(key)
            pipe.hset(key, mapping={'ticket': ticket, 'status': ISSUED})
            pipe.expire(key, self._ticket_expires)
            pipe.execute()
        except redis.exceptions.RedisError as e:
            raise KeyStoreError(f'Failed to save ticket: {e}') from e

    def get_ticket(self, purpose: str, username: str) -> Optional[dict]:
        """
        Get the current ticket for a user.

        Returns
        -------
        dict or None
            With keys ``ticket`` and ``status``, or None if no ticket has been
            issued or it has expired.

        """
        try:
            data = self.r.hgetall(ticket_key(purpose, username))
        except redis.exceptions.RedisError as e:
            raise KeyStoreError(f'Failed to load ticket: {e}') from e
        if not data or 'ticket' not in data:
            return None
        return dict(data)

    def mark_verified(self, purpose: str, username: str) -> None:
        """Record that the verification code for a ticket was confirmed."""
        try:
            self.r.hset(ticket_key(purpose, username), 'status', VERIFIED)
        except redis.exceptions.RedisError as e:
            raise KeyStoreError(f'Failed to update ticket: {e}') from e

    def delete_ticket(self, purpose: str, username: str) -> None:
        self._delete(ticket_key(purpose, username))

    def save_verify_code(self, username: str, code: str) -> None:
        try:
            self.r.set(verify_code_key(username), code,
                       ex=self._code_expires)
        except redis.exceptions.RedisError as e:
            raise KeyStoreError(f'Failed to save code: {e}') from e

    def get_verify_code(self, username: str) -> Optional[str]:
        return self._get(verify_code_key(username))

    def delete_verify_code(self, username: str) -> None:
        self._delete(verify_code_key(username))

    def save_login_token(self, uid: str, token: str) -> None:
        """Store the current login token, invalidating any earlier one."""
        try:
            self.r.set(login_token_key(uid), token, ex=self._login_expires)
        except redis.exceptions.RedisError as e:
            raise KeyStoreError(f'Failed to save login token: {e}') from e

    def get_login_token(self, uid: str) -> Optional[str]:
        return self._get(login_token_key(uid))

    def delete_login_token(self, uid: str) -> None:
        self._delete(login_token_key(uid))

    def _get(self, key: str) -> Optional[str]:
        try:
            value: Optional[str] = self.r.get(key)
        except redis.exceptions.RedisError as e:
            raise KeyStoreError(f'Failed to get {key}: {e}') from e
        return value

    def _delete(self, key: str) -> None:
        try:
            self.r.delete(key)
        except redis.exceptions.RedisError as e:
            raise KeyStoreError(f'Failed to delete {key}: {e}') from e
