"""Provides the HTTP API."""

import logging
from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, redirect, request, \
    session, Response

from .auth import login_required
from .controllers import ResponseData, oauth, user
from .oauth2 import UserAuthorizer
from .services import current_services

logger = logging.getLogger(__name__)

ping = Blueprint('ping', __name__)
blueprint = Blueprint('api', __name__, url_prefix='/api/v1')


def respond(data: ResponseData) -> Response:
    """Render a controller result as JSON, or as a redirect."""
    content, code, headers = data
    if code == HTTPStatus.FOUND:
        response = redirect(headers['Location'], code=code)
    else:
        response = jsonify(content)
        response.status_code = code
    response.headers.extend(
        {k: v for k, v in headers.items() if k != 'Location'}
    )
    return response


@ping.route('/ping', methods=['GET'])
def pong() -> Response:
    """Health check."""
    return Response('pong', mimetype='text/plain')


@blueprint.route('/verify/account', methods=['GET'])
def verify_account() -> Response:
    """Issue a registration or login ticket."""
    return respond(user.verify_account(request.args.get('username', ''),
                                       request.args.get('flag', ''),
                                       current_services(), current_app.config))


@blueprint.route('/sendEmail', methods=['POST'])
def send_email() -> Response:
    """Email a verification code."""
    ticket = request.headers.get(current_app.config['REGISTER_TICKET_HEADER'])
    return respond(user.send_verify_code(ticket, current_services(),
                                         current_app.config))


@blueprint.route('/verify/captcha', methods=['POST'])
def verify_captcha() -> Response:
    """Check the emailed verification code."""
    ticket = request.headers.get(current_app.config['REGISTER_TICKET_HEADER'])
    return respond(user.check_verify_code(ticket, request.form,
                                          current_services(),
                                          current_app.config))


@blueprint.route('/user/register', methods=['POST'])
def register() -> Response:
    """Create an account."""
    ticket = request.headers.get(current_app.config['REGISTER_TICKET_HEADER'])
    return respond(user.register(ticket, request.form, current_services(),
                                 current_app.config))


@blueprint.route('/user/login', methods=['POST'])
def login() -> Response:
    """Log in with a login ticket and password."""
    ticket = request.headers.get(current_app.config['LOGIN_TICKET_HEADER'])
    return respond(user.login(ticket, request.form, current_services(),
                              current_app.config))


@blueprint.route('/user/logout', methods=['POST'])
@login_required
def logout() -> Response:
    """Log out."""
    return respond(user.logout(request.auth, current_services()))


@blueprint.route('/user/info', methods=['GET'])
@login_required
def user_info() -> Response:
    """Get the logged-in user."""
    return respond(user.user_info(request.auth, current_services()))


@blueprint.route('/oauth2/authorize', methods=['GET', 'POST'])
def authorize() -> Response:
    """Authorize a client on behalf of the logged-in user."""
    services = current_services()
    authorizer = UserAuthorizer(services.keystore,
                                current_app.config['JWT_SECRET'])
    return respond(oauth.authorize(request.values.to_dict(),
                                   request.values.get('token'), session,
                                   current_app.server, authorizer,
                                   host_url=request.host_url,
                                   path=request.path))


@blueprint.route('/oauth2/token', methods=['POST'])
def token() -> Response:
    """Issue a token."""
    return respond(oauth.issue_token(current_app.server))


@blueprint.route('/oauth2/refresh', methods=['POST'])
def refresh() -> Response:
    """Exchange a refresh token for a new token pair."""
    return respond(oauth.refresh_token(request.form, current_app.server))


@blueprint.route('/oauth2/userinfo', methods=['GET'])
def oauth_user_info() -> Response:
    """Get the user that a bearer token was issued for."""
    services = current_services()
    return respond(oauth.user_info(request.headers.get('Authorization'),
                                   services.tokens, services.users))


@blueprint.route('/oauth2/create-client', methods=['POST'])
def create_client() -> Response:
    """Register a new client."""
    return respond(oauth.create_client(
        request.form,
        current_services().clients,
        registration_token=current_app.config.get('CLIENT_REGISTRATION_TOKEN'),
        presented_token=request.headers.get('X-Registration-Token')
    ))
