"""Tests for :mod:`sastlink.controllers.oauth`."""

import json
from datetime import timedelta
from http import HTTPStatus
from unittest import TestCase, mock

from authlib.oauth2.rfc6749 import InvalidClientError
from flask import Response
from sqlalchemy.exc import OperationalError
from werkzeug.datastructures import MultiDict

from ... import domain, result
from ...oauth2 import AuthenticationRequired, OAuth2User
from ...services import datastore
from .. import oauth


def _json(body: dict, status: int = 200) -> Response:
    return Response(json.dumps(body), status=status,
                    headers={'Content-Type': 'application/json',
                             'Cache-Control': 'no-store',
                             'Pragma': 'no-cache'})


TOKEN_BODY = {'access_token': 'a', 'refresh_token': 'r', 'expires_in': 7200,
              'token_type': 'Bearer', 'scope': 'all'}


class TestCreateClient(TestCase):
    """Tests for :func:`oauth.create_client`."""

    def setUp(self):
        self.clients = mock.MagicMock(spec=datastore.ClientStore)

    def test_empty_redirect_uri(self):
        """No client is created without a redirect URI."""
        for form in [MultiDict({'redirect_uri': ''}), MultiDict()]:
            data, code, _ = oauth.create_client(form, self.clients)
            self.assertEqual(data['code'], result.PARAM_ERROR.code)
            self.assertEqual(code, HTTPStatus.BAD_REQUEST)
        self.clients.create.assert_not_called()

    def test_relative_redirect_uri(self):
        """The redirect URI must be an absolute http(s) URL."""
        for uri in ['example.com', 'example.com/callback', '/callback',
                    'ftp://example.com/cb', 'javascript:alert(1)']:
            data, code, _ = oauth.create_client(
                MultiDict({'redirect_uri': uri}), self.clients
            )
            self.assertEqual(data['code'], result.PARAM_ERROR.code, uri)
            self.assertEqual(code, HTTPStatus.BAD_REQUEST)
        self.clients.create.assert_not_called()

    def test_created(self):
        """A UUID and a 32-character secret are generated."""
        data, code, _ = oauth.create_client(
            MultiDict({'redirect_uri': 'http://localhost:8080'}), self.clients
        )
        self.assertEqual(code, HTTPStatus.OK)
        self.assertTrue(data['success'])
        client_id = data['data']['client_id']
        client_secret = data['data']['client_secret']
        self.assertEqual(len(client_id), 36)
        self.assertEqual(len(client_secret), 32)
        self.clients.create.assert_called_once_with(client_id, client_secret,
                                                    'http://localhost:8080')

    def test_persistence_fails(self):
        self.clients.create.side_effect = OperationalError('', {}, None)
        data, code, _ = oauth.create_client(
            MultiDict({'redirect_uri': 'http://localhost:8080'}), self.clients
        )
        self.assertEqual(data['code'], result.INTERNAL_ERROR.code)
        self.assertEqual(code, HTTPStatus.INTERNAL_SERVER_ERROR)

    def test_registration_token(self):
        """If configured, the registration token must be presented."""
        form = MultiDict({'redirect_uri': 'http://localhost:8080'})
        for presented in [None, '', 'wrong']:
            data, code, _ = oauth.create_client(form, self.clients,
                                                registration_token='tok',
                                                presented_token=presented)
            self.assertEqual(data['code'], result.AUTH_ERROR.code)
            self.assertEqual(code, HTTPStatus.UNAUTHORIZED)
        self.clients.create.assert_not_called()
        data, _, _ = oauth.create_client(form, self.clients,
                                         registration_token='tok',
                                         presented_token='tok')
        self.assertTrue(data['success'])


class TestUserInfo(TestCase):
    """Tests for :func:`oauth.user_info`."""

    def setUp(self):
        self.tokens = mock.MagicMock(spec=datastore.TokenStore)
        self.users = mock.MagicMock(spec=datastore.UserStore)
        self.token = domain.Token(access_token='a', client_id='abc',
                                  scope='all', issued_at=datastore.now(),
                                  expires_in=7200, user_id='foo')

    def test_malformed_header(self):
        """A missing or malformed header never reaches user lookup."""
        for header in [None, '', 'Basic abc', 'Bearer', 'Bearer ', 'bearer a',
                       'Token a']:
            data, code, _ = oauth.user_info(header, self.tokens, self.users)
            self.assertEqual(data['code'], result.ACCESS_TOKEN_ERROR.code)
            self.assertEqual(code, HTTPStatus.OK)
        self.tokens.load_access_token.assert_not_called()
        self.users.get_by_uid.assert_not_called()

    def test_valid(self):
        """The user that the token was issued for is returned."""
        self.tokens.load_access_token.return_value = self.token
        self.users.get_by_uid.return_value = domain.User(
            uid='foo', email='foo@njupt.edu.cn'
        )
        data, code, _ = oauth.user_info('Bearer a', self.tokens, self.users)
        self.assertEqual(code, HTTPStatus.OK)
        self.assertEqual(data['data'], {'email': 'foo@njupt.edu.cn',
                                        'user_id': 'foo'})
        self.tokens.load_access_token.assert_called_once_with('a')
        self.users.get_by_uid.assert_called_once_with('foo')

    def test_unusable_token(self):
        """Unknown, expired and revoked tokens are rejected."""
        self.tokens.load_access_token.side_effect = datastore.NoSuchToken
        data, _, _ = oauth.user_info('Bearer a', self.tokens, self.users)
        self.assertEqual(data['code'], result.ACCESS_TOKEN_ERROR.code)

        self.tokens.load_access_token.side_effect = None
        for token in [
                self.token._replace(revoked=True),
                self.token._replace(
                    issued_at=datastore.now() - timedelta(hours=3)
                )]:
            self.tokens.load_access_token.return_value = token
            data, _, _ = oauth.user_info('Bearer a', self.tokens, self.users)
            self.assertEqual(data['code'], result.ACCESS_TOKEN_ERROR.code)
        self.users.get_by_uid.assert_not_called()

    def test_user_missing(self):
        self.tokens.load_access_token.return_value = self.token
        self.users.get_by_uid.side_effect = datastore.NoSuchUser
        data, code, _ = oauth.user_info('Bearer a', self.tokens, self.users)
        self.assertEqual(data['code'], result.GET_USERINFO_FAIL.code)
        self.assertEqual(code, HTTPStatus.OK)


class TestTokenEndpoints(TestCase):
    """Tests for :func:`oauth.issue_token` and :func:`oauth.refresh_token`."""

    def setUp(self):
        self.server = mock.MagicMock()
        self.form = {'grant_type': 'refresh_token', 'refresh_token': 'r'}

    def test_refresh_succeeds(self):
        """A successful refresh returns the token response."""
        self.server.create_token_response.return_value = _json(TOKEN_BODY)
        data, code, headers = oauth.refresh_token(self.form, self.server)
        self.assertEqual(code, HTTPStatus.OK)
        self.assertEqual(data, TOKEN_BODY)
        self.assertEqual(headers, {'Cache-Control': 'no-store',
                                   'Pragma': 'no-cache'})

    def test_refresh_params(self):
        """Refresh requires the refresh grant and a refresh token."""
        for form in [{'grant_type': 'authorization_code',
                      'refresh_token': 'r'},
                     {'grant_type': 'refresh_token', 'refresh_token': ''},
                     {'grant_type': 'refresh_token'}]:
            data, code, _ = oauth.refresh_token(form, self.server)
            self.assertEqual(data['code'], result.PARAM_ERROR.code)
            self.assertEqual(code, HTTPStatus.BAD_REQUEST)
        self.server.create_token_response.assert_not_called()

    def test_refresh_invalid_grant(self):
        """A rejected refresh token is reported as such."""
        self.server.create_token_response.return_value = \
            _json({'error': 'invalid_grant'}, 400)
        data, code, _ = oauth.refresh_token(self.form, self.server)
        self.assertEqual(data['code'], result.REFRESH_TOKEN_ERROR.code)
        self.assertEqual(code, HTTPStatus.BAD_REQUEST)

    def test_token_errors(self):
        """Protocol errors are translated, keeping the status code."""
        cases = [('invalid_client', 401, result.CLIENT_ERROR),
                 ('invalid_grant', 400, result.GRANT_ERROR),
                 ('invalid_scope', 400, result.SCOPE_ERROR),
                 ('unsupported_grant_type', 400, result.PARAM_ERROR),
                 ('invalid_request', 400, result.PARAM_ERROR)]
        for error, status, expected in cases:
            self.server.create_token_response.return_value = \
                _json({'error': error,
                       'error_description': 'secretdetail'}, status)
            data, code, _ = oauth.issue_token(self.server)
            self.assertEqual(data['code'], expected.code, error)
            self.assertEqual(code, status)
            self.assertNotIn('secretdetail', json.dumps(data))

    def test_unexpected_error(self):
        """Unexpected exceptions are internal errors."""
        self.server.create_token_response.side_effect = RuntimeError('boom')
        for data, code, _ in [oauth.issue_token(self.server),
                              oauth.refresh_token(self.form, self.server)]:
            self.assertEqual(data['code'], result.INTERNAL_ERROR.code)
            self.assertEqual(code, HTTPStatus.INTERNAL_SERVER_ERROR)
            self.assertNotIn('boom', json.dumps(data))


class TestAuthorize(TestCase):
    """Tests for :func:`oauth.authorize`."""

    def setUp(self):
        self.server = mock.MagicMock()
        self.server.create_authorization_response.return_value = Response(
            '', status=302,
            headers={'Location': 'http://localhost:8080/cb?code=c&state=s'}
        )
        self.authorizer = mock.MagicMock()
        self.authorizer.authorize.return_value = OAuth2User('foo')
        self.params = {'client_id': 'abc', 'response_type': 'code',
                       'state': 's'}

    def _replayed_args(self):
        _, kwargs = self.server.create_authorization_response.call_args
        return kwargs['request'].args.to_dict()

    def test_authorized(self):
        """A code is issued by redirect, without leaking the token."""
        session = {}
        data, code, headers = oauth.authorize(
            dict(self.params, token='t'), 't', session, self.server,
            self.authorizer
        )
        self.assertEqual(code, HTTPStatus.FOUND)
        self.assertEqual(headers['Location'],
                         'http://localhost:8080/cb?code=c&state=s')
        self.assertEqual(self._replayed_args(), self.params)
        (params, _), _ = self.authorizer.authorize.call_args
        self.assertEqual(params, dict(self.params, token='t'))
        _, kwargs = self.server.create_authorization_response.call_args
        self.assertEqual(kwargs['grant_user'].get_user_id(), 'foo')

    def test_replay(self):
        """Saved params replace the request params, with the new token."""
        session = {'return_uri': self.params}
        oauth.authorize({'token': 'new'}, 'new', session, self.server,
                        self.authorizer)
        (params, _), _ = self.authorizer.authorize.call_args
        self.assertEqual(params, dict(self.params, token='new'))
        self.assertEqual(self._replayed_args(), self.params)
        self.assertNotIn('return_uri', session)

    def test_login_required(self):
        """The user must log in first."""
        def require_login(params, session):
            session['return_uri'] = {k: v for k, v in params.items()
                                     if k != 'token'}
            raise AuthenticationRequired('nope')

        self.authorizer.authorize.side_effect = require_login
        session = {}
        data, code, _ = oauth.authorize(self.params, None, session,
                                        self.server, self.authorizer)
        self.assertEqual(data['code'], result.AUTH_ERROR.code)
        self.assertEqual(session['return_uri'], self.params)
        self.server.create_authorization_response.assert_not_called()

    def test_session_unavailable(self):
        """The request fails if the session cannot be loaded."""
        session = mock.MagicMock(unavailable=True)
        data, code, _ = oauth.authorize(self.params, 't', session,
                                        self.server, self.authorizer)
        self.assertEqual(data['code'], result.INTERNAL_ERROR.code)
        self.assertEqual(code, HTTPStatus.INTERNAL_SERVER_ERROR)
        self.authorizer.authorize.assert_not_called()

    def test_protocol_error(self):
        """Errors that cannot be redirected are translated."""
        self.server.create_authorization_response.return_value = \
            _json({'error': 'invalid_client'}, 400)
        data, code, _ = oauth.authorize(self.params, 't', {}, self.server,
                                        self.authorizer)
        self.assertEqual(data['code'], result.CLIENT_ERROR.code)
        self.assertEqual(code, HTTPStatus.BAD_REQUEST)

    def test_invalid_request_is_not_saved(self):
        """Malformed requests are rejected before the user is involved."""
        self.server.get_consent_grant.side_effect = InvalidClientError()
        self.server.handle_error_response.return_value = \
            _json({'error': 'invalid_client'}, 400)
        session = {}
        data, code, _ = oauth.authorize(self.params, None, session,
                                        self.server, self.authorizer)
        self.assertEqual(data['code'], result.CLIENT_ERROR.code)
        self.assertEqual(code, HTTPStatus.BAD_REQUEST)
        self.authorizer.authorize.assert_not_called()
        self.server.create_authorization_response.assert_not_called()
        self.assertNotIn('return_uri', session)

    def test_unexpected_error(self):
        self.server.create_authorization_response.side_effect = \
            RuntimeError('boom')
        data, code, _ = oauth.authorize(self.params, 't', {}, self.server,
                                        self.authorizer)
        self.assertEqual(data['code'], result.INTERNAL_ERROR.code)
        self.assertEqual(code, HTTPStatus.INTERNAL_SERVER_ERROR)
