"""
Integrations with the relational store, key-value store, and SMTP.

:func:`init_app` builds one :class:`Services` container per application and
attaches it as ``app.extensions['sastlink']``. Route handlers get it with
:func:`current_services` and pass its members to controllers.
"""

from typing import NamedTuple

from flask import Flask, current_app

from . import datastore
from .datastore import UserStore, ClientStore, TokenStore
from .keystore import KeyStore, get_redis
from .mail import Mailer
from .sessions import SessionStore, RedisSessionInterface


class Services(NamedTuple):
    """The service objects used by a running application."""

    users: UserStore
    clients: ClientStore
    tokens: TokenStore
    keystore: KeyStore
    sessions: SessionStore
    mailer: Mailer


def init_app(app: Flask) -> Services:
    """Build the services for ``app`` and install the session interface."""
    config = app.config
    datastore.init_app(app)
    r = get_redis(config)
    services = Services(
        users=UserStore(),
        clients=ClientStore(),
        tokens=TokenStore(),
        keystore=KeyStore(
            r,
            ticket_expires=int(config['TICKET_EXPIRES']),
            code_expires=int(config['VERIFY_CODE_EXPIRES']),
            login_expires=int(config['LOGIN_TOKEN_EXPIRES'])
        ),
        sessions=SessionStore(r, duration=int(config['SESSION_DURATION'])),
        mailer=Mailer(
            host=config['MAIL_SERVER'],
            port=int(config['MAIL_PORT']),
            sender=config['MAIL_SENDER'],
            secret=config['MAIL_SECRET'],
            subject=config['MAIL_SUBJECT']
        )
    )
    app.extensions['sastlink'] = services
    app.session_interface = RedisSessionInterface(services.sessions)
    return services


def current_services() -> Services:
    """Get the :class:`Services` of the current application."""
    services: Services = current_app.extensions['sastlink']
    return services
