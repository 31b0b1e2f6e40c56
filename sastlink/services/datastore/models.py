"""SQLAlchemy models for database integration."""

from datetime import datetime

from flask_sqlalchemy import SQLAlchemy
from pytz import UTC
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, \
    String, Text
from sqlalchemy.orm import relationship

db: SQLAlchemy = SQLAlchemy()


def _utcnow() -> datetime:
    return datetime.now(tz=UTC).replace(tzinfo=None)


class DBUser(db.Model):
    """Persistence for :class:`domain.User`."""

    __tablename__ = 'user'

    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(255), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password = Column(String(255), nullable=False)

    qq_id = Column(String(255), nullable=True)
    lark_id = Column(String(255), nullable=True)
    github_id = Column(String(255), nullable=True)
    wechat_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    is_deleted = Column(Boolean, nullable=False, default=False)


class DBClient(db.Model):
    """Persistence for :class:`domain.Client`."""

    __tablename__ = 'oauth2_client'

    client_id = Column(String(48), primary_key=True)
    client_secret = Column(String(255), nullable=False)
    """SHA-256 hex digest of the client secret."""

    domain = Column(String(2056), nullable=False)
    created = Column(DateTime, default=_utcnow)

    tokens = relationship('DBToken', back_populates='client')
    authorization_codes = relationship('DBAuthorizationCode',
                                       back_populates='client')


class DBToken(db.Model):
    """Persistence for :class:`domain.Token`."""

    __tablename__ = 'oauth2_token'

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(ForeignKey('oauth2_client.client_id'), nullable=False)
    user_id = Column(String(255), nullable=True)
    """The ``uid`` of the resource owner."""

    token_type = Column(String(40), default='Bearer')
    access_token = Column(String(255), unique=True, nullable=False,
                          index=True)
    refresh_token = Column(String(255), unique=True, nullable=True,
                           index=True)
    scope = Column(Text, default='')
    issued_at = Column(DateTime, nullable=False, default=_utcnow)
    expires_in = Column(Integer, nullable=False, default=0)
    refresh_token_expires_at = Column(DateTime, nullable=True)
    revoked = Column(Boolean, nullable=False, default=False)

    client = relationship('DBClient', back_populates='tokens')


class DBAuthorizationCode(db.Model):
    """Persistence for :class:`domain.AuthorizationCode`."""

    __tablename__ = 'oauth2_authorization_code'

    code = Column(String(120), primary_key=True)
    """The authorization code itself."""

    client_id = Column(ForeignKey('oauth2_client.client_id'), nullable=False)
    """The unique identifier of the API client."""

    user_id = Column(String(255), nullable=False)
    """The ``uid`` of the user granting the authorization."""

    redirect_uri = Column(Text, default='')
    """The URI to which the user should be redirected."""

    scope = Column(Text, default='')
    """The scope authorized by the user."""

    code_challenge = Column(Text, nullable=True)
    code_challenge_method = Column(String(48), nullable=True)

    created = Column(DateTime, default=_utcnow)
    """The time when the auth code was generated."""

    expires = Column(DateTime, default=_utcnow)
    """The time when the auth code expires."""

    client = relationship('DBClient', back_populates='authorization_codes')
