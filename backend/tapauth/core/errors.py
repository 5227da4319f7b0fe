# backend/tapauth/core/errors.py

from __future__ import annotations

from enum import Enum
import logging
from typing import Any, Optional

from tapauth.core.request_context import get_request_id

logger = logging.getLogger("tapauth")


class AuthErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"
    ALREADY_USED = "ALREADY_USED"
    FORBIDDEN = "FORBIDDEN"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class AuthServiceError(Exception):
    """
    Base class for every failure the auth services report.

    `code` is stable and machine-readable; `message` is the short user-facing
    text; `status_code` is the HTTP status the API layer answers with.
    """

    code: AuthErrorCode = AuthErrorCode.VALIDATION_ERROR
    status_code: int = 400
    default_message: str = "请求失败"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message}


class ValidationError(AuthServiceError):
    """Malformed email, wrong code, missing invitation code."""

    code = AuthErrorCode.VALIDATION_ERROR
    status_code = 400
    default_message = "请求参数错误"


class NotFoundError(AuthServiceError):
    code = AuthErrorCode.NOT_FOUND
    status_code = 400
    default_message = "记录不存在"


class ExpiredError(AuthServiceError):
    code = AuthErrorCode.EXPIRED
    status_code = 400
    default_message = "已过期"


class AlreadyUsedError(AuthServiceError):
    code = AuthErrorCode.ALREADY_USED
    status_code = 400
    default_message = "已被使用"


class AuthorizationError(AuthServiceError):
    code = AuthErrorCode.FORBIDDEN
    status_code = 403
    default_message = "无权限执行该操作"


class TransportError(AuthServiceError):
    """Email dispatch failed or timed out."""

    code = AuthErrorCode.TRANSPORT_ERROR
    status_code = 500
    default_message = "发送邮件失败"


class ConfigurationError(AuthServiceError):
    """Signing secret or email credentials are missing."""

    code = AuthErrorCode.CONFIGURATION_ERROR
    status_code = 500
    default_message = "服务配置错误"


class RequestIdFilter(logging.Filter):
    """
    Injects request_id into every LogRecord as `record.request_id`.
    Safe in non-request contexts (falls back to "-").
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


def install_request_id_logging(
    logger_name: str = "tapauth",
    *,
    include_root: bool = True,
) -> None:
    """
    Attach RequestIdFilter so logs can include %(request_id)s in the formatter.
    Call once during startup, right after logging.basicConfig().
    """
    filt = RequestIdFilter()

    if include_root:
        logging.getLogger().addFilter(filt)

    logging.getLogger(logger_name).addFilter(filt)


def log_exception_with_context(message: str, *, extra: Optional[dict[str, Any]] = None) -> None:
    """
    Log the currently-handled exception with its stack trace.

    request_id comes from RequestIdFilter; `extra` is rendered as key=value
    pairs into the message instead of onto the record.
    """
    context = " ".join(f"{k}={v}" for k, v in (extra or {}).items())
    if context:
        logger.exception("%s %s", message, context)
    else:
        logger.exception(message)
