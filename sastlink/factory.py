"""Application factory for the SAST Link account service."""

import logging
from http import HTTPStatus
from typing import Any

from flask import Flask, Response, jsonify
from werkzeug.exceptions import HTTPException

from . import cli, oauth2, result, services
from .app_logging import setup_logger
from .auth import Auth
from .routes import blueprint, ping
from .services import datastore

logger = logging.getLogger(__name__)

HTTP_RESULTS = {
    HTTPStatus.UNAUTHORIZED: result.AUTH_ERROR,
    HTTPStatus.FORBIDDEN: result.AUTH_ERROR,
}
"""Results for HTTP errors raised outside the controllers."""


def create_web_app(**config: Any) -> Flask:
    """
    Initialize and configure the application.

    Parameters
    ----------
    config
        Values that override those in ``config.py``, applied before any
        extension is initialized.

    """
    app = Flask('sastlink')
    app.config.from_pyfile('config.py')
    app.config.update(config)

    setup_logger(_level(app.config['LOGLEVEL']))

    app_services = services.init_app(app)
    Auth(app)   # Loads the logged-in user for each request.
    oauth2.init_app(app, app_services)
    app.register_blueprint(ping)
    app.register_blueprint(blueprint)
    cli.init_app(app)

    if app.config['CREATE_DB']:
        with app.app_context():
            datastore.create_all()

    register_error_handlers(app)
    logger.debug('Created app %s', app.name)
    return app


def register_error_handlers(app: Flask) -> None:
    """Register error handlers for the Flask app."""
    app.errorhandler(HTTPException)(jsonify_exception)
    app.errorhandler(Exception)(jsonify_internal_error)


def jsonify_exception(error: HTTPException) -> Response:
    """Render HTTP exceptions as a failure envelope."""
    status = error.code or HTTPStatus.INTERNAL_SERVER_ERROR
    if status >= HTTPStatus.INTERNAL_SERVER_ERROR:
        res = result.INTERNAL_ERROR
    else:
        res = HTTP_RESULTS.get(status, result.PARAM_ERROR)
    response: Response = jsonify(result.failed(res))
    response.status_code = status
    return response


def jsonify_internal_error(error: Exception) -> Response:
    """Log unexpected exceptions; the detail is not exposed to the caller."""
    if isinstance(error, HTTPException):
        return jsonify_exception(error)
    logger.exception('Unhandled exception: %s', error)
    response: Response = jsonify(result.failed(result.INTERNAL_ERROR))
    response.status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    return response


def _level(level: Any) -> Any:
    if isinstance(level, str) and level.isdigit():
        return int(level)
    return level
