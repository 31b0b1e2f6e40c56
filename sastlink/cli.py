"""
Management commands, available through ``flask`` once the app is loaded.

.. code-block:: bash

   FLASK_APP=wsgi.py flask create-db
   FLASK_APP=wsgi.py flask create-client --redirect-uri https://example.com/cb
   FLASK_APP=wsgi.py flask purge-tokens

"""

import click
from flask import Flask
from flask.cli import with_appcontext
from werkzeug.datastructures import MultiDict

from .controllers import oauth
from .services import current_services, datastore


@click.command('create-db')
@with_appcontext
def create_db() -> None:
    """Create all tables in the database."""
    datastore.create_all()
    click.echo('Created tables')


@click.command('create-client')
@click.option('--redirect-uri', prompt='Redirect URI')
@with_appcontext
def create_client(redirect_uri: str) -> None:
    """Register a new OAuth2 client."""
    data, _, _ = oauth.create_client(MultiDict({'redirect_uri': redirect_uri}),
                                     current_services().clients)
    if not data['success']:
        raise click.ClickException(data['message'])
    client = data['data']
    click.echo(f'Created client with ID {client["client_id"]}'
               f' and secret {client["client_secret"]}')


@click.command('purge-tokens')
@with_appcontext
def purge_tokens() -> None:
    """Delete revoked and expired tokens, and expired authorization codes."""
    n_tokens, n_codes = current_services().tokens.purge_expired()
    click.echo(f'Purged {n_tokens} tokens and {n_codes} authorization codes')


def init_app(app: Flask) -> None:
    """Register the management commands."""
    app.cli.add_command(create_db)
    app.cli.add_command(create_client)
    app.cli.add_command(purge_tokens)
