"""Sends verification email over SMTP."""

import logging
import smtplib
from email.header import Header
from email.mime.text import MIMEText
from email.utils import formataddr

from retry import retry

logger = logging.getLogger(__name__)

CODE_TEMPLATE = """\
<p>你好，</p>
<p>你的 SAST Link 验证码是 <strong>{code}</strong>，五分钟内有效。</p>
<p>如果这不是你本人的操作，请忽略此邮件。</p>
"""


class MailDeliveryFailed(RuntimeError):
    """A message could not be handed off to the SMTP server."""


class MailSession(object):
    """An open session with an SMTP service."""

    def __init__(self, host: str = "", port: int = 0, sender: str = "",
                 secret: str = "") -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._secret = secret
        self._conn = self._new_connection()

    def _new_connection(self) -> smtplib.SMTP_SSL:
        conn = smtplib.SMTP_SSL(host=self._host, port=self._port)
        if self._secret:
            conn.login(self._sender, self._secret)
        return conn

    def send_message(self, message: MIMEText) -> None:
        self._conn.sendmail(self._sender, [message['To']],
                            message.as_string())

    def close(self) -> None:
        try:
            self._conn.quit()
        except smtplib.SMTPException as e:
            logger.debug('Error closing SMTP session: %s', e)


class Mailer(object):
    """Composes and sends verification codes."""

    def __init__(self, host: str, port: int, sender: str, secret: str,
                 subject: str) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.secret = secret
        self.subject = subject

    def compose(self, recipient: str, code: str) -> MIMEText:
        message = MIMEText(CODE_TEMPLATE.format(code=code), 'html', 'utf-8')
        message['From'] = formataddr(('SAST Link', self.sender))
        message['To'] = recipient
        message['Subject'] = Header(self.subject, 'utf-8')
        return message

    def send_verify_code(self, recipient: str, code: str) -> None:
        """
        Email a verification code.

        Raises
        ------
        :class:`MailDeliveryFailed`
            If the message could not be sent after retries.

        """
        message = self.compose(recipient, code)
        try:
            self._send(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error('Could not send mail to %s: %s', recipient, e)
            raise MailDeliveryFailed(f'Could not send mail: {e}') from e
        logger.debug('Sent verification code to %s', recipient)

    @retry((smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError,
            ConnectionError), tries=3, delay=0.5, backoff=2)
    def _send(self, message: MIMEText) -> None:
        session = MailSession(self.host, self.port, self.sender, self.secret)
        try:
            session.send_message(message)
        finally:
            session.close()
