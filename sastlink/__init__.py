"""
SAST Link account service.

Provides account registration and login for organization members, and lets
registered client applications act on their behalf through OAuth2.

The application is built by :func:`sastlink.factory.create_web_app`.
Persistent data (users, clients, tokens) lives in a relational database via
:mod:`sastlink.services.datastore`; short-lived data (tickets, verification
codes, login tokens, sessions) lives in Redis.
"""
