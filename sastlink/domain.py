"""Core domain classes for the account service."""

from datetime import datetime
from typing import NamedTuple, Optional


class User(NamedTuple):
    """An organization member with an account."""

    uid: str
    """External-facing unique identifier; the username."""

    email: str

    user_id: Optional[int] = None
    """Internal identifier, assigned by the datastore."""

    qq_id: Optional[str] = None
    lark_id: Optional[str] = None
    github_id: Optional[str] = None
    wechat_id: Optional[str] = None
    """Links to third-party identities."""

    created_at: Optional[datetime] = None
    is_deleted: bool = False


class Client(NamedTuple):
    """A registered OAuth2 consumer application."""

    client_id: str
    """Public identifier for the API client."""

    client_secret: str
    """Hashed secret key for API client authentication."""

    domain: str
    """The redirect URI (or domain) registered for the client."""

    created: Optional[datetime] = None


class ClientInfo(NamedTuple):
    """Credentials presented (or resolved) for a token request."""

    client_id: str
    client_secret: str

    stored: bool = False
    """If true, ``client_secret`` is the stored hash, not a caller's secret."""


class Token(NamedTuple):
    """An access/refresh token pair issued to a client."""

    access_token: str
    client_id: str
    scope: str
    issued_at: datetime
    expires_in: int
    """Lifetime of the access token, in seconds."""

    refresh_token: Optional[str] = None
    refresh_token_expires_at: Optional[datetime] = None

    user_id: Optional[str] = None
    """The ``uid`` of the resource owner; None for client credentials."""

    token_type: str = 'Bearer'
    revoked: bool = False


class AuthorizationCode(NamedTuple):
    """An authorization code granted by a user to an API client."""

    code: str
    client_id: str
    user_id: str
    redirect_uri: str
    scope: str
    created: datetime
    expires: datetime
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
