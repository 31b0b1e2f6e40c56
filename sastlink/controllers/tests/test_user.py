"""Tests for :mod:`sastlink.controllers.user`."""

from http import HTTPStatus
from unittest import TestCase, mock

from werkzeug.datastructures import MultiDict

from ... import result, tokens
from ...factory import create_web_app
from ...services import current_services, datastore
from ...services.keystore import KeyStoreError, VERIFIED
from ...services.mail import MailDeliveryFailed
from .. import user

EMAIL = 'foo@njupt.edu.cn'


class ControllerTestCase(TestCase):
    """Runs each test in the context of an app with in-memory backends."""

    def setUp(self):
        self.app = create_web_app(SQLALCHEMY_DATABASE_URI='sqlite://',
                                  REDIS_FAKE=True, JWT_SECRET='foosecret',
                                  LOGLEVEL='ERROR')
        self.ctx = self.app.app_context()
        self.ctx.push()
        datastore.create_all()
        self.services = current_services()
        self.config = self.app.config
        self.mailer = mock.MagicMock()
        self.services = self.services._replace(mailer=self.mailer)

    def tearDown(self):
        datastore.drop_all()
        self.ctx.pop()

    def assertResult(self, response, expected, status=None):
        data, code, _ = response
        self.assertEqual(data['code'], expected.code, data['message'])
        self.assertEqual(data['success'], expected == result.SUCCESS)
        if status is not None:
            self.assertEqual(code, status)
        return data['data']

    def ticket(self, username, flag):
        data = self.assertResult(
            user.verify_account(username, flag, self.services, self.config),
            result.SUCCESS, HTTPStatus.OK
        )
        return data['ticket']


class TestVerifyAccount(ControllerTestCase):
    """Tests for :func:`user.verify_account`."""

    def test_register_ticket(self):
        """A register ticket is issued and stored."""
        ticket = self.ticket(EMAIL, '0')
        self.assertEqual(
            tokens.get_username(ticket, 'foosecret',
                                purpose=tokens.REGISTER_TICKET),
            EMAIL
        )
        stored = self.services.keystore.get_ticket('register', EMAIL)
        self.assertEqual(stored['ticket'], ticket)

    def test_register_bad_email(self):
        """Only organization addresses may register."""
        for username in ['foo@gmail.com', 'foo', '']:
            self.assertResult(
                user.verify_account(username, '0', self.services,
                                    self.config),
                result.PARAM_ERROR, HTTPStatus.BAD_REQUEST
            )

    def test_register_existing(self):
        """An address that is already registered cannot register again."""
        self.services.users.create('foo', EMAIL, 'secret123')
        self.assertResult(
            user.verify_account(EMAIL, '0', self.services, self.config),
            result.USER_EXISTS
        )

    def test_login_ticket(self):
        """Login tickets are issued for existing users, by email or uid."""
        self.services.users.create('foo', EMAIL, 'secret123')
        for username in [EMAIL, 'foo']:
            ticket = self.ticket(username, '1')
            self.assertEqual(
                tokens.get_username(ticket, 'foosecret',
                                    purpose=tokens.LOGIN_TICKET),
                username
            )

    def test_login_unknown_user(self):
        self.assertResult(
            user.verify_account('nobody', '1', self.services, self.config),
            result.USER_NOT_FOUND
        )

    def test_bad_flag(self):
        self.assertResult(
            user.verify_account(EMAIL, '2', self.services, self.config),
            result.PARAM_ERROR
        )


class TestRegistration(ControllerTestCase):
    """Verification code and registration."""

    def setUp(self):
        super(TestRegistration, self).setUp()
        self.register_ticket = self.ticket(EMAIL, '0')

    def _send_code(self):
        self.assertResult(
            user.send_verify_code(self.register_ticket, self.services,
                                  self.config),
            result.SUCCESS
        )
        (recipient, code), _ = self.mailer.send_verify_code.call_args
        self.assertEqual(recipient, EMAIL)
        return code

    def _check_code(self, code):
        return user.check_verify_code(self.register_ticket,
                                      MultiDict({'captcha': code}),
                                      self.services, self.config)

    def _register(self, password='secret123'):
        return user.register(self.register_ticket,
                             MultiDict({'password': password}),
                             self.services, self.config)

    def test_register(self):
        """The full registration flow creates a user."""
        code = self._send_code()
        self.assertResult(self._check_code(code), result.SUCCESS)
        self.assertEqual(
            self.services.keystore.get_ticket('register', EMAIL)['status'],
            VERIFIED
        )
        data = self.assertResult(self._register(), result.SUCCESS)
        self.assertEqual(data, {'uid': 'foo'})
        self.assertEqual(self.services.users.get_by_uid('foo').email, EMAIL)
        self.assertIsNone(self.services.keystore.get_ticket('register',
                                                            EMAIL))

    def test_wrong_code(self):
        """An incorrect code does not verify the ticket."""
        code = self._send_code()
        wrong = '000000' if code != '000000' else '111111'
        self.assertResult(self._check_code(wrong), result.VERIFY_CODE_ERROR)
        self.assertResult(self._register(), result.TICKET_ERROR,
                          HTTPStatus.UNAUTHORIZED)

    def test_code_is_consumed(self):
        """A code can be used only once."""
        code = self._send_code()
        self.assertResult(self._check_code(code), result.SUCCESS)
        self.assertResult(self._check_code(code), result.VERIFY_CODE_ERROR)

    def test_register_unverified(self):
        """Registration requires a verified ticket."""
        self.assertResult(self._register(), result.TICKET_ERROR)

    def test_bad_password(self):
        """Passwords must be 6 to 32 characters."""
        self._check_code(self._send_code())
        for password in ['short', 'x' * 33, '']:
            self.assertResult(self._register(password), result.PARAM_ERROR)
        self.assertResult(self._register('x' * 32), result.SUCCESS)

    def test_bad_ticket(self):
        """A ticket of another purpose or secret is rejected."""
        login_ticket = tokens.generate_token(EMAIL, 'foosecret', 300,
                                             purpose=tokens.LOGIN_TICKET)
        forged = tokens.generate_token(EMAIL, 'othersecret', 300,
                                       purpose=tokens.REGISTER_TICKET)
        for ticket in [login_ticket, forged, 'nope', '', None]:
            self.assertResult(
                user.send_verify_code(ticket, self.services, self.config),
                result.TICKET_ERROR
            )

    def test_superseded_ticket(self):
        """Only the most recent ticket is honored."""
        old = tokens.generate_token(EMAIL, 'foosecret', 100,
                                    purpose=tokens.REGISTER_TICKET)
        self.assertNotEqual(old, self.register_ticket)
        self.assertResult(
            user.send_verify_code(old, self.services, self.config),
            result.TICKET_ERROR
        )

    def test_mail_fails(self):
        self.mailer.send_verify_code.side_effect = MailDeliveryFailed('nope')
        self.assertResult(
            user.send_verify_code(self.register_ticket, self.services,
                                  self.config),
            result.SEND_EMAIL_FAIL, HTTPStatus.INTERNAL_SERVER_ERROR
        )


class TestLogin(ControllerTestCase):
    """Login, logout, and user info."""

    def setUp(self):
        super(TestLogin, self).setUp()
        self.services.users.create('foo', EMAIL, 'secret123')

    def _login(self, username='foo', password='secret123'):
        ticket = self.ticket(username, '1')
        return user.login(ticket, MultiDict({'password': password}),
                          self.services, self.config)

    def test_login(self):
        """A login token is issued and becomes current."""
        for username in ['foo', EMAIL]:
            data = self.assertResult(self._login(username), result.SUCCESS)
            self.assertEqual(tokens.get_username(data['token'], 'foosecret'),
                             'foo')
            self.assertEqual(self.services.keystore.get_login_token('foo'),
                             data['token'])

    def test_login_again(self):
        """Each login gets a distinct token, and only the last is current."""
        first = self.assertResult(self._login(), result.SUCCESS)['token']
        second = self.assertResult(self._login(), result.SUCCESS)['token']
        self.assertNotEqual(first, second)
        self.assertEqual(self.services.keystore.get_login_token('foo'),
                         second)

    def test_ticket_is_consumed(self):
        ticket = self.ticket('foo', '1')
        form = MultiDict({'password': 'secret123'})
        self.assertResult(user.login(ticket, form, self.services,
                                     self.config), result.SUCCESS)
        self.assertResult(user.login(ticket, form, self.services,
                                     self.config), result.TICKET_ERROR)

    def test_wrong_password(self):
        self.assertResult(self._login(password='wrong'),
                          result.PASSWORD_ERROR, HTTPStatus.UNAUTHORIZED)
        self.assertIsNone(self.services.keystore.get_login_token('foo'))

    def test_register_ticket_cannot_login(self):
        ticket = tokens.generate_token('foo', 'foosecret', 300,
                                       purpose=tokens.REGISTER_TICKET)
        self.assertResult(
            user.login(ticket, MultiDict({'password': 'secret123'}),
                       self.services, self.config),
            result.TICKET_ERROR
        )

    def test_logout(self):
        self._login()
        self.assertResult(user.logout('foo', self.services), result.SUCCESS)
        self.assertIsNone(self.services.keystore.get_login_token('foo'))

    def test_user_info(self):
        data = self.assertResult(user.user_info('foo', self.services),
                                 result.SUCCESS)
        self.assertEqual(data, {'email': EMAIL, 'uid': 'foo'})
        self.assertResult(user.user_info('bar', self.services),
                          result.USER_NOT_FOUND)

    def test_keystore_unavailable(self):
        """Key-value store failures are internal errors."""
        with mock.patch.object(self.services.keystore, 'save_ticket') as save:
            save.side_effect = KeyStoreError('nope')
            self.assertResult(
                user.verify_account('foo', '1', self.services, self.config),
                result.INTERNAL_ERROR, HTTPStatus.INTERNAL_SERVER_ERROR
            )
