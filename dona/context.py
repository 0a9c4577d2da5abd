"""
Request-scoped context objects for entitlement services.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import contextvars

from dona.errors import Unauthenticated


@dataclass(frozen=True)
class AuthContext:
    account_id: Optional[str] = None
    actor: Optional[str] = None


@dataclass(frozen=True)
class RequestContext:
    auth: AuthContext
    request_id: Optional[str] = None
    source: Optional[str] = None

    @staticmethod
    def for_account(account_id: str, **kwargs) -> "RequestContext":
        return RequestContext(auth=AuthContext(account_id=account_id, actor="user"), **kwargs)


_CURRENT_REQUEST_CONTEXT: contextvars.ContextVar[Optional["RequestContext"]] = contextvars.ContextVar(
    "dona_request_context",
    default=None,
)


def get_current_request_context() -> Optional["RequestContext"]:
    return _CURRENT_REQUEST_CONTEXT.get()


def set_current_request_context(context: Optional["RequestContext"]) -> contextvars.Token:
    return _CURRENT_REQUEST_CONTEXT.set(context)


def reset_current_request_context(token: contextvars.Token) -> None:
    _CURRENT_REQUEST_CONTEXT.reset(token)


def require_account_id(context: Optional["RequestContext"]) -> str:
    """Resolve the authenticated account id, falling back to the ambient context."""
    if context is None:
        context = get_current_request_context()
    account_id = None
    if context is not None and context.auth is not None:
        account_id = context.auth.account_id
    if account_id is None or not str(account_id).strip():
        raise Unauthenticated("account context is required")
    return str(account_id)


__all__ = [
    "AuthContext",
    "RequestContext",
    "get_current_request_context",
    "set_current_request_context",
    "reset_current_request_context",
    "require_account_id",
]
