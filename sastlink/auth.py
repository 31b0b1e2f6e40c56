"""
Attaches the logged-in user to the request.

Intended for use in a Flask application factory, for example:

.. code-block:: python

   from flask import Flask
   from sastlink.auth import Auth


   def create_web_app() -> Flask:
       app = Flask('sastlink')
       app.config.from_pyfile('config.py')
       Auth(app)
       return app


A request is authenticated by the login token in the ``TOKEN`` header
(``AUTH_TOKEN_HEADER``). The token must decode to a username, and must be the
token most recently issued to that user. The username is then available as
``request.auth``; otherwise ``request.auth`` is ``None``.
"""

import hmac
import logging
from functools import wraps
from http import HTTPStatus
from typing import Any, Callable, Optional

from flask import Flask, current_app, jsonify, request

from . import result, tokens
from .services import current_services
from .services.keystore import KeyStoreError

logger = logging.getLogger(__name__)


class Auth(object):
    """Loads the authenticated username for each request."""

    def __init__(self, app: Optional[Flask] = None) -> None:
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """Attach :meth:`.load_user` to the Flask app."""
        self.app = app
        app.config.setdefault('AUTH_TOKEN_HEADER', 'TOKEN')
        app.before_request(self.load_user)

    def load_user(self) -> None:
        """Attach the username of the logged-in user (or None)."""
        header = current_app.config['AUTH_TOKEN_HEADER']
        request.auth = authenticate(request.headers.get(header))


def authenticate(token: Optional[str]) -> Optional[str]:
    """Get the username for a login token, if it is the current one."""
    if not token:
        return None
    try:
        username = tokens.get_username(token,
                                       current_app.config['JWT_SECRET'])
    except tokens.InvalidToken as e:
        logger.debug('Invalid login token: %s', e)
        return None
    try:
        current = current_services().keystore.get_login_token(username)
    except KeyStoreError as e:
        logger.error('Could not check login token: %s', e)
        return None
    if not current or not hmac.compare_digest(current, token):
        logger.debug('Login token for %s is not current', username)
        return None
    return username


def login_required(func: Callable) -> Callable:
    """Answer ``AUTH_ERROR`` unless the request is authenticated."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        if not getattr(request, 'auth', None):
            return jsonify(result.failed(result.AUTH_ERROR)), \
                HTTPStatus.UNAUTHORIZED
        return func(*args, **kwargs)
    return wrapper
