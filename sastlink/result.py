"""
Result codes and the JSON envelope used by every API response.

Responses have the shape ``{success, code, message, data}``. Failures carry
one of the :class:`Result` values defined here; services signal them by
raising :class:`Failure`.
"""

from typing import Any, NamedTuple, Optional


class Result(NamedTuple):
    """An outcome that can be reported to API consumers."""

    code: int
    message: str

    def wrap(self, error: Optional[BaseException] = None) -> 'Failure':
        """Get a :class:`Failure` for this result, caused by ``error``."""
        failure = Failure(self, str(error) if error is not None else None)
        failure.__cause__ = error
        return failure


class Failure(RuntimeError):
    """Raised to report a :class:`Result` to the caller."""

    def __init__(self, result: Result, detail: Optional[str] = None) -> None:
        self.result = result
        self.detail = detail
        super(Failure, self).__init__(
            f'{result.message}: {detail}' if detail else result.message
        )


SUCCESS = Result(0, 'ok')

INTERNAL_ERROR = Result(10000, 'Internal error')
PARAM_ERROR = Result(10001, 'Invalid or missing parameter')

AUTH_ERROR = Result(20001, 'Authentication required')
ACCESS_TOKEN_ERROR = Result(20002, 'Invalid access token')
REFRESH_TOKEN_ERROR = Result(20003, 'Invalid refresh token')
CLIENT_ERROR = Result(20004, 'Invalid client')
GRANT_ERROR = Result(20005, 'Invalid grant')
SCOPE_ERROR = Result(20006, 'Invalid scope')

TICKET_ERROR = Result(30001, 'Invalid or expired ticket')
VERIFY_CODE_ERROR = Result(30002, 'Incorrect verification code')
USER_EXISTS = Result(30003, 'User already exists')
USER_NOT_FOUND = Result(30004, 'User does not exist')
PASSWORD_ERROR = Result(30005, 'Incorrect password')
GET_USERINFO_FAIL = Result(30006, 'Could not get user information')
SEND_EMAIL_FAIL = Result(30007, 'Could not send email')


def success(data: Any = None) -> dict:
    """Build a success envelope."""
    return {
        'success': True,
        'code': SUCCESS.code,
        'message': SUCCESS.message,
        'data': data
    }


def failed(result: Result) -> dict:
    """Build a failure envelope for ``result``."""
    return {
        'success': False,
        'code': result.code,
        'message': result.message,
        'data': None
    }
