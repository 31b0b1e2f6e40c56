"""
Controllers for the OAuth2 endpoints.

Protocol handling is delegated to the :class:`AuthorizationServer` in
:mod:`sastlink.oauth2`. These controllers identify the end user, replay
authorization requests after login, and translate protocol errors into the
response envelope.
"""

import logging
import secrets
import uuid
from http import HTTPStatus
from typing import Any, Mapping, MutableMapping, Optional

from authlib.oauth2 import OAuth2Error
from flask import Request, Response
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.datastructures import MultiDict

from . import ResponseData, failed, succeeded
from .forms import ClientRegistrationForm
from .. import result
from ..oauth2 import AuthenticationRequired, OAuth2Token, UserAuthorizer, \
    SastLinkAuthorizationServer
from ..services.datastore import ClientStore, TokenStore, UserStore, \
    NoSuchToken, NoSuchUser

logger = logging.getLogger(__name__)

OAUTH_ERRORS = {
    'invalid_client': result.CLIENT_ERROR,
    'invalid_grant': result.GRANT_ERROR,
    'invalid_scope': result.SCOPE_ERROR,
}
"""Results for OAuth2 error codes; anything else is a ``PARAM_ERROR``."""

PASSTHROUGH_HEADERS = ('Cache-Control', 'Pragma')


def authorize(params: Mapping[str, str], token: Optional[str],
              session: MutableMapping[str, Any],
              server: SastLinkAuthorizationServer,
              authorizer: UserAuthorizer, host_url: str = 'http://localhost/',
              path: str = '/api/v1/oauth2/authorize') -> ResponseData:
    """
    Handle an authorization request.

    If the user had to log in during an earlier attempt, the parameters of
    that attempt are replayed in place of ``params``, with the current
    ``token``. The request is validated before the user is identified, so
    that a malformed request is never saved for replay.

    Parameters
    ----------
    params : Mapping
        Query and form parameters of the request.
    token : str or None
        The login token presented with this request.
    session : MutableMapping
        The server-side session of the end user.
    server : :class:`SastLinkAuthorizationServer`
    authorizer : :class:`UserAuthorizer`
    host_url : str
        Scheme and host of the current request.
    path : str
        Path of the current request.

    Returns
    -------
    dict
        Response envelope; empty when redirecting.
    int
        Status code; 302 if a code was issued.
    dict
        Headers to add to the response.

    """
    if getattr(session, 'unavailable', False):
        logger.error('Session is unavailable')
        return failed(result.INTERNAL_ERROR)
    try:
        saved = session.pop('return_uri', None)
        if saved:
            logger.debug('Replaying saved authorization request')
            params = dict(saved)
        params = {k: v for k, v in params.items() if k != 'token'}
        replayed = Request.from_values(path=path, base_url=host_url,
                                       query_string=params, method='GET')

        # Malformed requests are answered before the user is involved.
        try:
            server.get_consent_grant(request=replayed)
        except OAuth2Error as e:
            logger.debug('Invalid authorization request: %s', e)
            response = server.handle_error_response(
                server.create_oauth2_request(replayed), e
            )
        else:
            try:
                user = authorizer.authorize(
                    dict(params, token=token or ''), session
                )
            except AuthenticationRequired as e:
                logger.debug('Login required: %s', e)
                return failed(result.AUTH_ERROR, HTTPStatus.OK)
            response = server.create_authorization_response(
                request=replayed, grant_user=user
            )
    except Exception as e:
        logger.exception('Authorization failed: %s', e)
        return failed(result.INTERNAL_ERROR)

    if response.status_code in (HTTPStatus.FOUND, HTTPStatus.SEE_OTHER):
        return {}, HTTPStatus.FOUND, {'Location': response.headers['Location']}
    return _translate_error(response)


def issue_token(server: SastLinkAuthorizationServer,
                request: Optional[Request] = None) -> ResponseData:
    """Handle a token request for any supported grant."""
    try:
        response = server.create_token_response(request)
    except Exception as e:
        logger.exception('Token request failed: %s', e)
        return failed(result.INTERNAL_ERROR)
    return _token_result(response)


def refresh_token(form: Mapping[str, str],
                  server: SastLinkAuthorizationServer,
                  request: Optional[Request] = None) -> ResponseData:
    """Handle a refresh request, which must use the ``refresh_token`` grant."""
    if form.get('grant_type') != 'refresh_token' \
            or not form.get('refresh_token'):
        return failed(result.PARAM_ERROR)
    try:
        response = server.create_token_response(request)
    except Exception as e:
        logger.exception('Refresh request failed: %s', e)
        return failed(result.INTERNAL_ERROR)
    return _token_result(response, refresh=True)


def create_client(form_data: MultiDict, clients: ClientStore,
                  registration_token: Optional[str] = None,
                  presented_token: Optional[str] = None) -> ResponseData:
    """
    Register a new OAuth2 client.

    The plain client secret is returned once; only its hash is stored.
    """
    if registration_token and (
            not presented_token
            or not secrets.compare_digest(registration_token,
                                          presented_token)):
        return failed(result.AUTH_ERROR)
    form = ClientRegistrationForm(form_data)
    if not form.validate():
        return failed(result.PARAM_ERROR)

    client_id = str(uuid.uuid4())
    client_secret = secrets.token_urlsafe(24)
    try:
        clients.create(client_id, client_secret, form.redirect_uri.data)
    except SQLAlchemyError as e:
        logger.exception('Could not save client: %s', e)
        return failed(result.INTERNAL_ERROR)
    logger.info('Registered client %s', client_id)
    return succeeded({'client_id': client_id, 'client_secret': client_secret})


def user_info(authorization: Optional[str], tokens: TokenStore,
              users: UserStore) -> ResponseData:
    """Get the user that a bearer token was issued for."""
    if not authorization or not authorization.startswith('Bearer '):
        return failed(result.ACCESS_TOKEN_ERROR)
    access_token = authorization[len('Bearer '):].strip()
    if not access_token:
        return failed(result.ACCESS_TOKEN_ERROR)
    try:
        token = OAuth2Token(tokens.load_access_token(access_token))
    except NoSuchToken:
        return failed(result.ACCESS_TOKEN_ERROR)
    if token.is_expired() or token.is_revoked():
        return failed(result.ACCESS_TOKEN_ERROR)
    # TODO: enforce the token scope once clients register the scopes they use.
    try:
        user = users.get_by_uid(token.token.user_id or '')
    except NoSuchUser as e:
        logger.error('Could not get user for token: %s', e)
        return failed(result.GET_USERINFO_FAIL)
    return succeeded({'email': user.email, 'user_id': user.uid})


def _token_result(response: Response, refresh: bool = False) -> ResponseData:
    data = response.get_json(silent=True)
    if response.status_code == HTTPStatus.OK and data \
            and 'access_token' in data:
        headers = {k: v for k, v in response.headers.items()
                   if k in PASSTHROUGH_HEADERS}
        return data, HTTPStatus.OK, headers
    return _translate_error(response, refresh=refresh)


def _translate_error(response: Response,
                     refresh: bool = False) -> ResponseData:
    data = response.get_json(silent=True) or {}
    error = data.get('error')
    logger.debug('OAuth2 error %s: %s', error, data.get('error_description'))
    if error == 'invalid_grant' and refresh:
        res = result.REFRESH_TOKEN_ERROR
    else:
        res = OAUTH_ERRORS.get(error, result.PARAM_ERROR)
    status = response.status_code
    if status < 400:
        status = HTTPStatus.BAD_REQUEST
    return failed(res, status)
