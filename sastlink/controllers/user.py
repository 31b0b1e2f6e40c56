"""
Controllers for account verification, registration, and login.

Registration and login each start with :func:`verify_account`, which issues a
short-lived ticket for the username. Registration then proceeds by email
verification (:func:`send_verify_code`, :func:`check_verify_code`) before
:func:`register` consumes the verified ticket. Login presents the ticket with
the password, and gets a login token in exchange.
"""

import logging
import re
from typing import Any, Mapping

from werkzeug.datastructures import MultiDict

from . import ResponseData, failed, succeeded
from .forms import RegistrationForm, LoginForm, VerifyCodeForm
from .. import result, tokens
from ..services import Services
from ..services.datastore import NoSuchUser, UserExists
from ..services.keystore import KeyStoreError, VERIFIED, generate_code
from ..services.mail import MailDeliveryFailed

logger = logging.getLogger(__name__)

REGISTER = 'register'
LOGIN = 'login'
FLAGS = {'0': REGISTER, '1': LOGIN}


def verify_account(username: str, flag: str, services: Services,
                   config: Mapping[str, Any]) -> ResponseData:
    """
    Issue a ticket to begin registration (flag 0) or login (flag 1).

    Parameters
    ----------
    username : str
        An email address for registration; an email address or uid for login.
    flag : str
        ``'0'`` or ``'1'``.

    Returns
    -------
    dict
        Response envelope with the ``ticket``.
    int
        Status code.
    dict
        Headers to add to the response.

    """
    username = (username or '').strip()
    purpose = FLAGS.get(str(flag))
    if not username or purpose is None:
        return failed(result.PARAM_ERROR)
    try:
        if purpose == REGISTER:
            if not re.match(config['REGISTRATION_EMAIL_PATTERN'], username):
                return failed(result.PARAM_ERROR)
            if services.users.email_exists(username):
                return failed(result.USER_EXISTS)
        else:
            try:
                services.users.get_by_username(username)
            except NoSuchUser:
                return failed(result.USER_NOT_FOUND)

        ticket = tokens.generate_token(username, config['JWT_SECRET'],
                                       int(config['TICKET_EXPIRES']),
                                       purpose=tokens.TICKET_PURPOSES[purpose])
        services.keystore.save_ticket(purpose, username, ticket)
    except KeyStoreError as e:
        logger.exception('Could not issue ticket: %s', e)
        return failed(result.INTERNAL_ERROR)
    logger.debug('Issued %s ticket for %s', purpose, username)
    return succeeded({'ticket': ticket})


def send_verify_code(ticket: str, services: Services,
                     config: Mapping[str, Any]) -> ResponseData:
    """Email a verification code to the holder of a register ticket."""
    try:
        username = _check_ticket(ticket, REGISTER, services, config)
        code = generate_code()
        services.keystore.save_verify_code(username, code)
        services.mailer.send_verify_code(username, code)
    except result.Failure as e:
        return failed(e.result)
    except MailDeliveryFailed as e:
        logger.error('Could not send verification code: %s', e)
        return failed(result.SEND_EMAIL_FAIL)
    except KeyStoreError as e:
        logger.exception('Could not save verification code: %s', e)
        return failed(result.INTERNAL_ERROR)
    return succeeded()


def check_verify_code(ticket: str, form_data: MultiDict, services: Services,
                      config: Mapping[str, Any]) -> ResponseData:
    """Confirm the emailed code, which marks the register ticket verified."""
    form = VerifyCodeForm(form_data)
    if not form.validate():
        return failed(result.PARAM_ERROR)
    try:
        username = _check_ticket(ticket, REGISTER, services, config)
        code = services.keystore.get_verify_code(username)
        if not code or code != form.captcha.data.strip():
            return failed(result.VERIFY_CODE_ERROR)
        services.keystore.delete_verify_code(username)
        services.keystore.mark_verified(REGISTER, username)
    except result.Failure as e:
        return failed(e.result)
    except KeyStoreError as e:
        logger.exception('Could not check verification code: %s', e)
        return failed(result.INTERNAL_ERROR)
    return succeeded()


def register(ticket: str, form_data: MultiDict, services: Services,
             config: Mapping[str, Any]) -> ResponseData:
    """
    Create an account for the holder of a verified register ticket.

    The uid of the new user is the local part of their email address.
    """
    try:
        email = _check_ticket(ticket, REGISTER, services, config,
                              verified=True)
    except result.Failure as e:
        return failed(e.result)
    except KeyStoreError as e:
        logger.exception('Could not check ticket: %s', e)
        return failed(result.INTERNAL_ERROR)

    form = RegistrationForm(form_data)
    if not form.validate():
        logger.debug('Registration form invalid: %s', form.errors)
        return failed(result.PARAM_ERROR)

    uid = email.split('@', 1)[0]
    try:
        services.users.create(uid, email, form.password.data)
    except UserExists:
        return failed(result.USER_EXISTS)
    try:
        services.keystore.delete_ticket(REGISTER, email)
    except KeyStoreError as e:
        logger.error('Could not delete ticket: %s', e)
    logger.info('Registered user %s', uid)
    return succeeded({'uid': uid})


def login(ticket: str, form_data: MultiDict, services: Services,
          config: Mapping[str, Any]) -> ResponseData:
    """
    Exchange a login ticket and password for a login token.

    Only the most recently issued login token is honored, so logging in
    again ends any earlier login.
    """
    form = LoginForm(form_data)
    if not form.validate():
        return failed(result.PARAM_ERROR)
    try:
        username = _check_ticket(ticket, LOGIN, services, config)
        try:
            user = services.users.check_password(username, form.password.data)
        except NoSuchUser:
            return failed(result.USER_NOT_FOUND)
        except ValueError:
            logger.debug('Wrong password for %s', username)
            return failed(result.PASSWORD_ERROR)

        token = tokens.generate_token(user.uid, config['JWT_SECRET'],
                                      int(config['LOGIN_TOKEN_EXPIRES']))
        services.keystore.save_login_token(user.uid, token)
        services.keystore.delete_ticket(LOGIN, username)
    except result.Failure as e:
        return failed(e.result)
    except KeyStoreError as e:
        logger.exception('Could not log in: %s', e)
        return failed(result.INTERNAL_ERROR)
    logger.info('User %s logged in', user.uid)
    return succeeded({'token': token})


def logout(username: str, services: Services) -> ResponseData:
    """End the login of ``username`` by discarding their login token."""
    try:
        services.keystore.delete_login_token(username)
    except KeyStoreError as e:
        logger.exception('Could not log out: %s', e)
        return failed(result.INTERNAL_ERROR)
    return succeeded()


def user_info(username: str, services: Services) -> ResponseData:
    """Get the email and uid of the logged-in user."""
    try:
        user = services.users.get_by_uid(username)
    except NoSuchUser:
        return failed(result.USER_NOT_FOUND)
    return succeeded({'email': user.email, 'uid': user.uid})


def _check_ticket(ticket: str, purpose: str, services: Services,
                  config: Mapping[str, Any], verified: bool = False) -> str:
    """
    Get the username of a current ticket.

    Raises
    ------
    :class:`result.Failure`
        With ``TICKET_ERROR`` if the ticket cannot be decoded, is not for
        ``purpose``, has been superseded, or (if ``verified`` is set) has not
        been verified.

    """
    if not ticket:
        raise result.Failure(result.TICKET_ERROR, 'No ticket')
    try:
        username = tokens.get_username(ticket, config['JWT_SECRET'],
                                       purpose=tokens.TICKET_PURPOSES[purpose])
    except tokens.InvalidToken as e:
        raise result.TICKET_ERROR.wrap(e) from e
    stored = services.keystore.get_ticket(purpose, username)
    if stored is None or stored['ticket'] != ticket:
        raise result.Failure(result.TICKET_ERROR, 'Not the current ticket')
    if verified and stored.get('status') != VERIFIED:
        raise result.Failure(result.TICKET_ERROR, 'Ticket is not verified')
    return username
