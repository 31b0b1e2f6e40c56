"""Database integration for users, API clients, tokens and auth codes."""

import hashlib
import hmac
import logging
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from . import util, models
from ... import domain
from ...passwords import check_password, hash_password

logger = logging.getLogger(__name__)


class NoSuchUser(RuntimeError):
    """A user was requested that does not exist."""


class UserExists(RuntimeError):
    """A user with the same uid or email already exists."""


class NoSuchClient(RuntimeError):
    """A client was requested that does not exist."""


class NoSuchToken(RuntimeError):
    """A non-existant :class:`domain.Token` was requested."""


class NoSuchAuthCode(RuntimeError):
    """A non-existant :class:`domain.AuthorizationCode` was requested."""


init_app = util.init_app
create_all = util.create_all
drop_all = util.drop_all
now = util.now


def hash_secret(secret: str) -> str:
    """Get the SHA-256 hex digest stored in place of a client secret."""
    return hashlib.sha256(secret.encode('utf-8')).hexdigest()


def secrets_match(secret: str, hashed: str) -> bool:
    """Compare a plain client secret to a stored digest."""
    return hmac.compare_digest(hash_secret(secret), hashed)


class UserStore:
    """Reads and writes :class:`domain.User` records."""

    def create(self, uid: str, email: str, password: str) -> domain.User:
        """
        Create a new user with a hashed password.

        Raises
        ------
        :class:`UserExists`
            If the uid or email is already taken (including by a deleted
            account).

        """
        with util.transaction() as dbsession:
            existing = dbsession.query(models.DBUser) \
                .filter((models.DBUser.uid == uid)
                        | (models.DBUser.email == email)) \
                .first()
            if existing is not None:
                raise UserExists(f'User {uid} <{email}> already exists')
            db_user = models.DBUser(
                uid=uid,
                email=email,
                password=hash_password(password),
                created_at=util.now()
            )
            dbsession.add(db_user)
            try:
                dbsession.commit()
            except IntegrityError as e:
                dbsession.rollback()
                raise UserExists(f'User {uid} <{email}> already exists') from e
            return _to_user(db_user)

    def get_by_uid(self, uid: str) -> domain.User:
        with util.transaction() as dbsession:
            return _to_user(_load_dbuser(dbsession, uid=uid))

    def get_by_email(self, email: str) -> domain.User:
        with util.transaction() as dbsession:
            return _to_user(_load_dbuser(dbsession, email=email))

    def get_by_username(self, username: str) -> domain.User:
        """Load a user by email if ``username`` looks like one, else by uid."""
        if '@' in username:
            return self.get_by_email(username)
        return self.get_by_uid(username)

    def email_exists(self, email: str) -> bool:
        try:
            self.get_by_email(email)
        except NoSuchUser:
            return False
        return True

    def check_password(self, username: str, password: str) -> domain.User:
        """
        Authenticate a user with their password.

        Returns
        -------
        :class:`domain.User`

        Raises
        ------
        :class:`NoSuchUser`
            If the user does not exist.
        :class:`ValueError`
            If the password is wrong.

        """
        with util.transaction() as dbsession:
            if '@' in username:
                db_user = _load_dbuser(dbsession, email=username)
            else:
                db_user = _load_dbuser(dbsession, uid=username)
            if not check_password(password, db_user.password):
                raise ValueError('Incorrect password')
            return _to_user(db_user)


class ClientStore:
    """Reads and writes :class:`domain.Client` records."""

    def create(self, client_id: str, secret: str, domain_: str) \
            -> domain.Client:
        """Persist a client. Only the hash of ``secret`` is stored."""
        with util.transaction() as dbsession:
            db_client = models.DBClient(
                client_id=client_id,
                client_secret=hash_secret(secret),
                domain=domain_,
                created=util.now()
            )
            dbsession.add(db_client)
            dbsession.commit()
            return _to_client(db_client)

    def get(self, client_id: str) -> domain.Client:
        with util.transaction() as dbsession:
            db_client: Optional[models.DBClient] = \
                dbsession.query(models.DBClient) \
                .filter(models.DBClient.client_id == client_id) \
                .first()
            if db_client is None:
                raise NoSuchClient(f'Client {client_id} does not exist')
            return _to_client(db_client)


class TokenStore:
    """Persistence for issued tokens and authorization codes."""

    def save_token(self, token: domain.Token) -> None:
        """Save a newly issued access/refresh token pair."""
        with util.transaction() as dbsession:
            dbsession.add(models.DBToken(
                client_id=token.client_id,
                user_id=token.user_id,
                token_type=token.token_type,
                access_token=token.access_token,
                refresh_token=token.refresh_token,
                scope=token.scope,
                issued_at=token.issued_at,
                expires_in=token.expires_in,
                refresh_token_expires_at=token.refresh_token_expires_at,
                revoked=token.revoked
            ))

    def load_access_token(self, access_token: str) -> domain.Token:
        with util.transaction() as dbsession:
            db_token = dbsession.query(models.DBToken) \
                .filter(models.DBToken.access_token == access_token) \
                .first()
            if db_token is None:
                raise NoSuchToken('No such access token')
            return _to_token(db_token)

    def load_refresh_token(self, refresh_token: str) -> domain.Token:
        with util.transaction() as dbsession:
            db_token = dbsession.query(models.DBToken) \
                .filter(models.DBToken.refresh_token == refresh_token) \
                .first()
            if db_token is None:
                raise NoSuchToken('No such refresh token')
            return _to_token(db_token)

    def revoke(self, access_token: str) -> None:
        """Mark a token pair as revoked."""
        with util.transaction() as dbsession:
            db_token = dbsession.query(models.DBToken) \
                .filter(models.DBToken.access_token == access_token) \
                .first()
            if db_token is None:
                raise NoSuchToken('No such access token')
            db_token.revoked = True
            dbsession.add(db_token)

    def purge_expired(self) -> Tuple[int, int]:
        """
        Delete tokens and authorization codes that can no longer be used.

        A token is purged once it is revoked, or once its refresh token has
        expired; a token without a refresh token goes when its access token
        expires.

        Returns
        -------
        int
            Number of tokens deleted.
        int
            Number of authorization codes deleted.

        """
        current = util.now()
        with util.transaction() as dbsession:
            n_tokens = dbsession.query(models.DBToken) \
                .filter(or_(
                    models.DBToken.revoked.is_(True),
                    models.DBToken.refresh_token_expires_at <= current
                )) \
                .delete(synchronize_session=False)
            access_only = dbsession.query(models.DBToken) \
                .filter(models.DBToken.refresh_token.is_(None)) \
                .all()
            for db_token in access_only:
                expires = db_token.issued_at \
                    + timedelta(seconds=db_token.expires_in)
                if expires <= current:
                    dbsession.delete(db_token)
                    n_tokens += 1
            n_codes = dbsession.query(models.DBAuthorizationCode) \
                .filter(models.DBAuthorizationCode.expires <= current) \
                .delete(synchronize_session=False)
            dbsession.commit()
        logger.info('Purged %i tokens and %i authorization codes',
                    n_tokens, n_codes)
        return n_tokens, n_codes

    def save_auth_code(self, code: domain.AuthorizationCode) -> None:
        """Save a new authorization code."""
        with util.transaction() as dbsession:
            dbsession.add(models.DBAuthorizationCode(
                code=code.code,
                client_id=code.client_id,
                user_id=code.user_id,
                redirect_uri=code.redirect_uri,
                scope=code.scope,
                code_challenge=code.code_challenge,
                code_challenge_method=code.code_challenge_method,
                created=code.created,
                expires=code.expires
            ))

    def load_auth_code(self, code: str, client_id: str) \
            -> domain.AuthorizationCode:
        """Load an authorization code for an API client."""
        with util.transaction() as dbsession:
            db_code = _load_dbauthcode(code, client_id, dbsession)
            return domain.AuthorizationCode(
                code=db_code.code,
                client_id=db_code.client_id,
                user_id=db_code.user_id,
                redirect_uri=db_code.redirect_uri or '',
                scope=db_code.scope or '',
                created=db_code.created,
                expires=db_code.expires,
                code_challenge=db_code.code_challenge,
                code_challenge_method=db_code.code_challenge_method
            )

    def delete_auth_code(self, code: str, client_id: str) -> None:
        """Delete an auth code from the database."""
        with util.transaction() as dbsession:
            db_code = _load_dbauthcode(code, client_id, dbsession)
            dbsession.delete(db_code)


def _load_dbuser(dbsession: util.Session, uid: Optional[str] = None,
                 email: Optional[str] = None) -> models.DBUser:
    query = dbsession.query(models.DBUser) \
        .filter(models.DBUser.is_deleted.is_(False))
    if uid is not None:
        query = query.filter(models.DBUser.uid == uid)
    elif email is not None:
        query = query.filter(models.DBUser.email == email)
    else:
        raise ValueError('Must pass uid or email')
    db_user: Optional[models.DBUser] = query.first()
    if db_user is None:
        raise NoSuchUser(f'No such user: {uid or email}')
    return db_user


def _load_dbauthcode(code: str, client_id: str, dbsession: util.Session) \
        -> models.DBAuthorizationCode:
    db_code = dbsession.query(models.DBAuthorizationCode)\
        .filter(models.DBAuthorizationCode.code == code) \
        .filter(models.DBAuthorizationCode.client_id == client_id) \
        .first()
    if db_code is None:
        raise NoSuchAuthCode(f'Auth code does not exist'
                             f' for client {client_id}')
    return db_code


def _to_user(db_user: models.DBUser) -> domain.User:
    return domain.User(
        uid=db_user.uid,
        email=db_user.email,
        user_id=db_user.id,
        qq_id=db_user.qq_id,
        lark_id=db_user.lark_id,
        github_id=db_user.github_id,
        wechat_id=db_user.wechat_id,
        created_at=db_user.created_at,
        is_deleted=bool(db_user.is_deleted)
    )


def _to_client(db_client: models.DBClient) -> domain.Client:
    return domain.Client(
        client_id=str(db_client.client_id),
        client_secret=str(db_client.client_secret),
        domain=str(db_client.domain),
        created=db_client.created
    )


def _to_token(db_token: models.DBToken) -> domain.Token:
    return domain.Token(
        access_token=db_token.access_token,
        client_id=db_token.client_id,
        scope=db_token.scope or '',
        issued_at=db_token.issued_at,
        expires_in=db_token.expires_in,
        refresh_token=db_token.refresh_token,
        refresh_token_expires_at=db_token.refresh_token_expires_at,
        user_id=db_token.user_id,
        token_type=db_token.token_type or 'Bearer',
        revoked=bool(db_token.revoked)
    )
