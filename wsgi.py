"""Web Server Gateway Interface entry-point."""

from sastlink.factory import create_web_app

app = create_web_app()


def application(environ, start_response):    # type: ignore
    """WSGI application."""
    return app(environ, start_response)
