"""Flask configuration."""

import os
import secrets

SECRET_KEY = os.environ.get('SECRET_KEY', secrets.token_urlsafe(16))
"""Signs the session cookie, which carries only the server-side session ID."""

LOGLEVEL = os.environ.get('LOGLEVEL', 'INFO')

#################### Key-value store ####################
REDIS_HOST = os.environ.get('REDIS_HOST', 'localhost')
REDIS_PORT = os.environ.get('REDIS_PORT', '6379')
REDIS_DATABASE = os.environ.get('REDIS_DATABASE', '0')
REDIS_TOKEN = os.environ.get('REDIS_TOKEN', None)
"""This is the token used in the AUTH procedure."""

REDIS_FAKE = bool(int(os.environ.get('REDIS_FAKE', '0')))
"""Use the FakeRedis library instead of a redis service.

Useful for testing, dev, beta."""

#################### Relational store ####################
SQLALCHEMY_DATABASE_URI = os.environ.get('SQLALCHEMY_DATABASE_URI',
                                         'sqlite://')
SQLALCHEMY_TRACK_MODIFICATIONS = False
CREATE_DB = bool(int(os.environ.get('CREATE_DB', '0')))

#################### Login & verification ####################
JWT_SECRET = os.environ.get('JWT_SECRET', secrets.token_urlsafe(16))
"""Secret used to sign tickets and login tokens."""

TICKET_EXPIRES = int(os.environ.get('TICKET_EXPIRES', '300'))
VERIFY_CODE_EXPIRES = int(os.environ.get('VERIFY_CODE_EXPIRES', '300'))
LOGIN_TOKEN_EXPIRES = int(os.environ.get('LOGIN_TOKEN_EXPIRES', '604800'))

AUTH_TOKEN_HEADER = os.environ.get('AUTH_TOKEN_HEADER', 'TOKEN')
REGISTER_TICKET_HEADER = 'REGISTER-TICKET'
LOGIN_TICKET_HEADER = 'LOGIN-TICKET'

REGISTRATION_EMAIL_PATTERN = os.environ.get(
    'REGISTRATION_EMAIL_PATTERN',
    r'^[A-Za-z0-9._%+-]+@njupt\.edu\.cn$'
)
"""Only addresses matching this pattern may register."""

#################### Server-side sessions ####################
SESSION_COOKIE_NAME = os.environ.get('SESSION_COOKIE_NAME', 'SAST_LINK_SESSION')
SESSION_COOKIE_SECURE = bool(int(os.environ.get('SESSION_COOKIE_SECURE', '1')))
SESSION_COOKIE_HTTPONLY = True
SESSION_DURATION = int(os.environ.get('SESSION_DURATION', '7200'))

#################### OAuth2 ####################
OAUTH2_TOKEN_EXPIRES_IN = {
    'authorization_code': 7200,
    'client_credentials': 7200,
    'refresh_token': 7200,
}
"""Access token lifetimes, per grant type."""

OAUTH2_REFRESH_TOKEN_GENERATOR = True
OAUTH2_REFRESH_TOKEN_EXPIRES = int(
    os.environ.get('OAUTH2_REFRESH_TOKEN_EXPIRES', '259200')
)
OAUTH2_AUTH_CODE_EXPIRES = int(os.environ.get('OAUTH2_AUTH_CODE_EXPIRES',
                                              '600'))

CLIENT_REGISTRATION_TOKEN = os.environ.get('CLIENT_REGISTRATION_TOKEN')
"""If set, client registration requires this value in X-Registration-Token."""

#################### Mail ####################
MAIL_SERVER = os.environ.get('MAIL_SERVER', 'smtp.feishu.cn')
MAIL_PORT = int(os.environ.get('MAIL_PORT', '465'))
MAIL_SENDER = os.environ.get('MAIL_SENDER', '')
MAIL_SECRET = os.environ.get('MAIL_SECRET', '')
MAIL_SUBJECT = os.environ.get('MAIL_SUBJECT',
                              '确认电子邮件注册SAST-Link账户')
