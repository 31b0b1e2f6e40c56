"""
OAuth2 (RFC6749) implementation, using :mod:`authlib`.

This module extends the :mod:`authlib.integrations.flask_oauth2`
implementation, leveraging users, clients and tokens stored in
:mod:`sastlink.services.datastore`, and login tokens kept in
:mod:`sastlink.services.keystore`.

The current implementation supports the ``authorization_code`` (with optional
PKCE), ``refresh_token`` and ``client_credentials`` grants. Clients
authenticate at the token endpoint with the ``client_secret_form`` method,
which is implemented by :class:`ClientCredentialResolver`: the credentials are
read from the form body, except for refresh requests, where the client is
identified by the refresh token itself.
"""

import hmac
import logging
from datetime import timedelta
from typing import Any, Mapping, MutableMapping, Optional
from urllib.parse import urlparse

from flask import Flask, request as flask_req
from authlib.integrations.flask_oauth2 import AuthorizationServer
from authlib.integrations.flask_oauth2.requests import FlaskOAuth2Request
from authlib.oauth2.rfc6749 import ClientMixin, TokenMixin, \
    AuthorizationCodeMixin, grants, OAuth2Request
from authlib.oauth2.rfc7636 import CodeChallenge

from .. import domain, result, tokens as login_tokens
from ..services import Services
from ..services.datastore import UserStore, ClientStore, TokenStore, \
    NoSuchUser, NoSuchClient, NoSuchToken, NoSuchAuthCode, now, \
    secrets_match
from ..services.keystore import KeyStore, KeyStoreError

logger = logging.getLogger(__name__)

AUTH_METHOD = 'client_secret_form'
GRANT_TYPES = {'authorization_code', 'refresh_token', 'client_credentials'}


class AuthenticationRequired(RuntimeError):
    """The end user must log in before authorizing a client."""


class OAuth2User(object):
    """
    Represents the resource owner in OAuth2 workflows.

    The user ID given to Authlib is the username (``uid``), which is also what
    login tokens and issued tokens refer to.
    """

    def __init__(self, uid: str, user: Optional[domain.User] = None) -> None:
        self.uid = uid
        self.user = user

    def get_user_id(self) -> str:
        """Get the ID of the user."""
        return self.uid


class OAuth2Client(ClientMixin):
    """
    Implementation of an OAuth2 client as described in RFC6749.

    Wraps a :class:`domain.Client`. Clients are not restricted by scope or
    grant type; the registered domain bounds where codes may be sent.
    """

    def __init__(self, client: domain.Client) -> None:
        self._client = client

    @property
    def client_id(self) -> str:
        return self._client.client_id

    @property
    def domain(self) -> str:
        return self._client.domain

    def get_client_id(self) -> str:
        return self._client.client_id

    def get_default_redirect_uri(self) -> Optional[str]:
        """
        Get the default redirect URI for the client.

        Only an absolute http(s) URL can serve as the default; otherwise
        requests must name their ``redirect_uri``.
        """
        parsed = urlparse(self._client.domain or '')
        if parsed.scheme not in ('http', 'https') or not parsed.hostname:
            return None
        return self._client.domain

    def get_allowed_scope(self, scope: str) -> str:
        if not scope:
            return ''
        return scope

    def check_redirect_uri(self, redirect_uri: str) -> bool:
        """
        Check that the provided redirect URI is authorized.

        The host of ``redirect_uri`` must be the host of the registered
        domain, or one of its subdomains; paths are not compared.
        """
        registered = _host(self._client.domain)
        requested = _host(redirect_uri)
        logger.debug('Check redirect URI: %s, %s', requested, registered)
        if not registered or not requested:
            return False
        return requested == registered \
            or requested.endswith(f'.{registered}')

    def check_client_secret(self, client_secret: str) -> bool:
        """Check a plain client secret against the stored hash."""
        return secrets_match(client_secret, self._client.client_secret)

    def check_stored_secret(self, hashed: str) -> bool:
        """Check a secret hash that was resolved from the datastore."""
        return hmac.compare_digest(hashed, self._client.client_secret)

    def check_endpoint_auth_method(self, method: str, endpoint: str) -> bool:
        if endpoint == 'token':
            return method == AUTH_METHOD
        return True

    def check_response_type(self, response_type: str) -> bool:
        return response_type == 'code'

    def check_grant_type(self, grant_type: str) -> bool:
        return grant_type in GRANT_TYPES


class OAuth2Token(TokenMixin):
    """Wraps :class:`domain.Token` for use in OAuth2 workflows."""

    def __init__(self, token: domain.Token) -> None:
        self._token = token

    @property
    def token(self) -> domain.Token:
        return self._token

    def check_client(self, client: OAuth2Client) -> bool:
        return bool(client.get_client_id() == self._token.client_id)

    def get_scope(self) -> str:
        return self._token.scope

    def get_expires_in(self) -> int:
        return self._token.expires_in

    def is_expired(self) -> bool:
        expires = self._token.issued_at \
            + timedelta(seconds=self._token.expires_in)
        return expires <= now()

    def is_refresh_expired(self) -> bool:
        expires = self._token.refresh_token_expires_at
        return expires is None or expires <= now()

    def is_revoked(self) -> bool:
        return self._token.revoked


class OAuth2AuthorizationCode(AuthorizationCodeMixin):
    """Wraps :class:`domain.AuthorizationCode` for use in OAuth2 workflows."""

    _fields = ['code', 'client_id', 'user_id', 'redirect_uri', 'scope',
               'created', 'expires', 'code_challenge',
               'code_challenge_method']

    def __init__(self, auth_code: domain.AuthorizationCode) -> None:
        """Initialize with the wrapped :class:`domain.AuthorizationCode`."""
        self._code = auth_code

    def __getattr__(self, key: str) -> Any:
        """Get an attribute from the wrapped :class:`.AuthorizationCode`."""
        if key in self._fields:
            return getattr(self._code, key)
        raise AttributeError(f'No attribute {key}')

    def is_expired(self) -> bool:
        """Indicate whether the code is expired."""
        return self._code.expires <= now()

    def get_redirect_uri(self) -> str:
        return self._code.redirect_uri

    def get_scope(self) -> str:
        return self._code.scope


class ClientCredentialResolver(object):
    """
    Determines which client credentials a token request carries.

    Refresh requests need not carry any: the client is the one that the
    refresh token was issued to, and its stored secret is used.
    """

    def __init__(self, clients: ClientStore, tokens: TokenStore) -> None:
        self.clients = clients
        self.tokens = tokens

    def resolve(self, form: Mapping[str, str]) -> domain.ClientInfo:
        """
        Get the client ID and secret for a token request.

        Parameters
        ----------
        form : Mapping
            The token request body.

        Returns
        -------
        :class:`domain.ClientInfo`

        Raises
        ------
        :class:`result.Failure`
            With ``REFRESH_TOKEN_ERROR`` if the refresh token is unknown, or
            ``CLIENT_ERROR`` if the client cannot be identified.

        """
        if form.get('grant_type') == 'refresh_token':
            try:
                token = self.tokens.load_refresh_token(
                    form.get('refresh_token') or ''
                )
            except NoSuchToken as e:
                raise result.REFRESH_TOKEN_ERROR.wrap(e) from e
            if not token.client_id:
                raise result.Failure(result.CLIENT_ERROR, 'Token has no client')
            try:
                client = self.clients.get(token.client_id)
            except NoSuchClient as e:
                raise result.CLIENT_ERROR.wrap(e) from e
            if not client.client_secret:
                raise result.Failure(result.CLIENT_ERROR, 'Client has no secret')
            return domain.ClientInfo(client.client_id, client.client_secret,
                                     stored=True)

        client_id = form.get('client_id')
        if not client_id:
            raise result.Failure(result.CLIENT_ERROR, 'Missing client_id')
        client_secret = form.get('client_secret')
        if not client_secret:
            raise result.Failure(result.CLIENT_ERROR, 'Missing client_secret')
        return domain.ClientInfo(client_id, client_secret)

    def __call__(self, query_client: Any, request: OAuth2Request) \
            -> Optional[OAuth2Client]:
        """Authenticate the client of a token request, for Authlib."""
        try:
            info = self.resolve(request.form)
        except result.Failure as e:
            logger.debug('Could not resolve client credentials: %s', e)
            return None
        client: Optional[OAuth2Client] = query_client(info.client_id)
        if client is None:
            logger.debug('No such client %s', info.client_id)
            return None
        if info.stored:
            authenticated = client.check_stored_secret(info.client_secret)
        else:
            authenticated = client.check_client_secret(info.client_secret)
        if not authenticated:
            logger.debug('Bad secret for client %s', info.client_id)
            return None
        return client


class UserAuthorizer(object):
    """
    Identifies the end user who is authorizing a client.

    The user must present the login token that was most recently issued to
    them. If they cannot, the authorization parameters are kept in the session
    so that the request can be replayed after they log in.
    """

    def __init__(self, keystore: KeyStore, secret: str) -> None:
        self.keystore = keystore
        self.secret = secret

    def authorize(self, params: Mapping[str, str],
                  session: MutableMapping[str, Any]) -> OAuth2User:
        """
        Resolve the user from the ``token`` parameter.

        Parameters
        ----------
        params : Mapping
            The authorization request parameters, including ``token``.
        session : MutableMapping
            The server-side session of the end user.

        Returns
        -------
        :class:`OAuth2User`

        Raises
        ------
        :class:`AuthenticationRequired`
            If the user is not logged in. ``session['return_uri']`` then holds
            the request parameters without the token.

        """
        token = params.get('token')
        if not token:
            self._require_login(params, session)
            raise AuthenticationRequired('No login token')
        try:
            username = login_tokens.get_username(token, self.secret)
        except login_tokens.InvalidToken as e:
            self._require_login(params, session)
            raise AuthenticationRequired(str(e)) from e
        try:
            current = self.keystore.get_login_token(username)
        except KeyStoreError as e:
            logger.error('Could not load login token: %s', e)
            self._require_login(params, session)
            raise AuthenticationRequired('Login token unavailable') from e
        if not current or not hmac.compare_digest(current, token):
            self._require_login(params, session)
            raise AuthenticationRequired('Not the current login token')
        return OAuth2User(username)

    def _require_login(self, params: Mapping[str, str],
                       session: MutableMapping[str, Any]) -> None:
        session['return_uri'] = {k: v for k, v in params.items()
                                 if k != 'token'}


class AuthorizationCodeGrant(grants.AuthorizationCodeGrant):
    """Authorization code grant for organization members."""

    TOKEN_ENDPOINT_AUTH_METHODS = [AUTH_METHOD]

    def save_authorization_code(self, code: str,
                                request: OAuth2Request) -> None:
        """Persist a new authorization code for the requesting client."""
        created = now()
        payload = request.payload
        self.server.tokens.save_auth_code(domain.AuthorizationCode(
            code=code,
            client_id=request.client.get_client_id(),
            user_id=request.user.get_user_id(),
            redirect_uri=payload.redirect_uri or '',
            scope=payload.scope or '',
            created=created,
            expires=created + timedelta(seconds=self.server.auth_code_expires),
            code_challenge=payload.data.get('code_challenge'),
            code_challenge_method=payload.data.get('code_challenge_method')
        ))

    def query_authorization_code(self, code: str, client: OAuth2Client) \
            -> Optional[OAuth2AuthorizationCode]:
        """Attempt to retrieve an auth code for an API client."""
        try:
            auth_code = OAuth2AuthorizationCode(
                self.server.tokens.load_auth_code(code, client.client_id)
            )
        except NoSuchAuthCode:
            logger.debug('No such auth code for %s', client.client_id)
            return None
        if auth_code.is_expired():
            logger.debug('Auth code for %s has expired', client.client_id)
            return None
        return auth_code

    def delete_authorization_code(
            self, authorization_code: OAuth2AuthorizationCode) -> None:
        self.server.tokens.delete_auth_code(authorization_code.code,
                                            authorization_code.client_id)

    def authenticate_user(self, authorization_code: OAuth2AuthorizationCode) \
            -> Optional[OAuth2User]:
        """Authenticate the user implicated in the auth code."""
        return self.server.load_user(authorization_code.user_id)


class RefreshTokenGrant(grants.RefreshTokenGrant):
    """Exchanges a refresh token for a new token pair, revoking the old one."""

    TOKEN_ENDPOINT_AUTH_METHODS = [AUTH_METHOD]
    INCLUDE_NEW_REFRESH_TOKEN = True

    def authenticate_refresh_token(self, refresh_token: str) \
            -> Optional[OAuth2Token]:
        try:
            token = OAuth2Token(
                self.server.tokens.load_refresh_token(refresh_token)
            )
        except NoSuchToken:
            return None
        if token.is_revoked() or token.is_refresh_expired():
            logger.debug('Refresh token is revoked or expired')
            return None
        return token

    def authenticate_user(self, refresh_token: OAuth2Token) \
            -> Optional[OAuth2User]:
        if not refresh_token.token.user_id:
            return None
        return self.server.load_user(refresh_token.token.user_id)

    def revoke_old_credential(self, refresh_token: OAuth2Token) -> None:
        self.server.tokens.revoke(refresh_token.token.access_token)


class ClientCredentialsGrant(grants.ClientCredentialsGrant):
    """Client credentials are read from the form body."""

    TOKEN_ENDPOINT_AUTH_METHODS = [AUTH_METHOD]


class SastLinkAuthorizationServer(AuthorizationServer):
    """An :class:`AuthorizationServer` backed by our datastore."""

    def __init__(self, users: UserStore, clients: ClientStore,
                 tokens: TokenStore) -> None:
        super(SastLinkAuthorizationServer, self).__init__()
        self.users = users
        self.clients = clients
        self.tokens = tokens
        self.refresh_token_expires = 259200
        self.auth_code_expires = 600

    def init_app(self, app: Flask, *args: Any, **kwargs: Any) -> None:
        """Configure token generation and lifetimes from ``app.config``."""
        super(SastLinkAuthorizationServer, self).init_app(app, *args, **kwargs)
        self.refresh_token_expires = \
            int(app.config.get('OAUTH2_REFRESH_TOKEN_EXPIRES', 259200))
        self.auth_code_expires = \
            int(app.config.get('OAUTH2_AUTH_CODE_EXPIRES', 600))

    def query_client(self, client_id: str) -> Optional[OAuth2Client]:
        """
        Load client data and generate a :class:`OAuth2Client`.

        Returns
        -------
        :class:`OAuth2Client` or None
            If the client is not found, returns `None`.

        """
        if not client_id:
            return None
        try:
            return OAuth2Client(self.clients.get(client_id))
        except NoSuchClient as e:
            logger.debug('No such client %s: %s', client_id, e)
            return None

    def save_token(self, token: dict, request: OAuth2Request) -> None:
        """Persist a token pair generated by the server."""
        issued_at = now()
        refresh_token = token.get('refresh_token')
        user = request.user
        self.tokens.save_token(domain.Token(
            access_token=token['access_token'],
            refresh_token=refresh_token,
            client_id=request.client.get_client_id(),
            user_id=user.get_user_id() if user else None,
            scope=token.get('scope', ''),
            token_type=token.get('token_type', 'Bearer'),
            issued_at=issued_at,
            expires_in=int(token['expires_in']),
            refresh_token_expires_at=(
                issued_at + timedelta(seconds=self.refresh_token_expires)
                if refresh_token else None
            )
        ))
        logger.debug('Saved token for client %s',
                     request.client.get_client_id())

    def load_user(self, uid: str) -> Optional[OAuth2User]:
        try:
            return OAuth2User(uid, self.users.get_by_uid(uid))
        except NoSuchUser:
            logger.debug('No such user %s', uid)
            return None

    def create_oauth2_request(self, request: Any) -> OAuth2Request:
        """Wrap ``request``, or the current Flask request if none is given."""
        if isinstance(request, OAuth2Request):
            return request
        return FlaskOAuth2Request(request if request is not None
                                  else flask_req)


def create_server(services: Services) -> SastLinkAuthorizationServer:
    """Instantiate and configure an :class:`AuthorizationServer`."""
    server = SastLinkAuthorizationServer(services.users, services.clients,
                                         services.tokens)
    server.register_client_auth_method(
        AUTH_METHOD,
        ClientCredentialResolver(services.clients, services.tokens)
    )
    server.register_grant(AuthorizationCodeGrant,
                          [CodeChallenge(required=False)])
    server.register_grant(RefreshTokenGrant)
    server.register_grant(ClientCredentialsGrant)
    logger.debug('Created server %s', id(server))
    return server


def init_app(app: Flask, services: Services) -> SastLinkAuthorizationServer:
    """Attach an :class:`AuthorizationServer` to a :class:`Flask` app."""
    server = create_server(services)
    server.init_app(app)
    app.server = server
    return server


def _host(uri: str) -> str:
    parsed = urlparse(uri if '//' in uri else f'//{uri}')
    return (parsed.hostname or '').lower()
