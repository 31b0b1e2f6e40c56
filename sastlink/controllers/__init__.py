"""
Request controllers.

Controllers are plain functions that take request data and the service
objects they need, and return a ``(data, status, headers)`` tuple. They never
touch the Flask request or application globals; the routes do that.
"""

from http import HTTPStatus
from typing import Optional, Tuple

from .. import result

ResponseData = Tuple[dict, int, dict]

STATUS = {
    result.INTERNAL_ERROR: HTTPStatus.INTERNAL_SERVER_ERROR,
    result.PARAM_ERROR: HTTPStatus.BAD_REQUEST,
    result.AUTH_ERROR: HTTPStatus.UNAUTHORIZED,
    result.ACCESS_TOKEN_ERROR: HTTPStatus.OK,
    result.TICKET_ERROR: HTTPStatus.UNAUTHORIZED,
    result.VERIFY_CODE_ERROR: HTTPStatus.BAD_REQUEST,
    result.USER_EXISTS: HTTPStatus.CONFLICT,
    result.USER_NOT_FOUND: HTTPStatus.NOT_FOUND,
    result.PASSWORD_ERROR: HTTPStatus.UNAUTHORIZED,
    result.GET_USERINFO_FAIL: HTTPStatus.OK,
    result.SEND_EMAIL_FAIL: HTTPStatus.INTERNAL_SERVER_ERROR,
}
"""HTTP status used for each result, unless a controller says otherwise."""


def succeeded(data: Optional[dict] = None,
              headers: Optional[dict] = None) -> ResponseData:
    return result.success(data), HTTPStatus.OK, headers or {}


def failed(res: result.Result, status: Optional[int] = None) -> ResponseData:
    if status is None:
        status = STATUS.get(res, HTTPStatus.BAD_REQUEST)
    return result.failed(res), status, {}
