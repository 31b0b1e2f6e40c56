"""Functions for working with tickets and login tokens.

Both are HS256 JSON web tokens that carry a username and a ``purpose``
claim, so that a ticket cannot be replayed as a login token or vice versa.
"""

import secrets
from datetime import datetime, timedelta

import jwt
from pytz import UTC

LOGIN = 'login'
REGISTER_TICKET = 'register'
LOGIN_TICKET = 'login_ticket'
TICKET_PURPOSES = {'register': REGISTER_TICKET, 'login': LOGIN_TICKET}


class InvalidToken(ValueError):
    """A token could not be decoded, has expired, or has the wrong purpose."""


def generate_token(username: str, secret: str, expires_in: int,
                   purpose: str = LOGIN) -> str:
    """Sign a new token for ``username``."""
    issued = datetime.now(tz=UTC)
    claims = {
        'username': username,
        'purpose': purpose,
        'iat': issued,
        'exp': issued + timedelta(seconds=expires_in),
        'jti': secrets.token_urlsafe(16)
    }
    return jwt.encode(claims, secret, algorithm='HS256')


def get_username(token: str, secret: str, purpose: str = LOGIN) -> str:
    """Decode a token and get the username that it was issued to."""
    try:
        claims: dict = jwt.decode(token, secret, algorithms=['HS256'])
    except jwt.ExpiredSignatureError as e:
        raise InvalidToken('Token has expired') from e
    except jwt.InvalidTokenError as e:
        raise InvalidToken('Not a valid token') from e
    if claims.get('purpose') != purpose:
        raise InvalidToken(f'Not a {purpose} token')
    username = claims.get('username')
    if not username:
        raise InvalidToken('Token has no username')
    return str(username)
