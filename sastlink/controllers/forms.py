"""Provides forms for login, registration, and client registration."""

from urllib.parse import urlparse

from wtforms import StringField, PasswordField, Form
from wtforms.validators import DataRequired, Length, URL, ValidationError


class RegistrationForm(Form):
    """Password for a new account."""

    password = PasswordField('Password',
                             validators=[DataRequired(), Length(min=6, max=32)])


class LoginForm(Form):
    """Log in form."""

    password = PasswordField('Password', validators=[DataRequired()])


class VerifyCodeForm(Form):
    """The code that was sent by email."""

    captcha = StringField('Verification code', validators=[DataRequired()])


class ClientRegistrationForm(Form):
    """Register a new OAuth2 client."""

    redirect_uri = StringField('Redirect URI',
                               validators=[DataRequired(),
                                           URL(require_tld=False)])

    def validate_redirect_uri(self, field: StringField) -> None:
        """Codes are only ever sent to absolute http(s) URLs."""
        parsed = urlparse(field.data or '')
        if parsed.scheme not in ('http', 'https') or not parsed.hostname:
            raise ValidationError('Must be an absolute http(s) URL')
