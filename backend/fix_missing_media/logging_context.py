from __future__ import annotations

import logging
from contextvars import ContextVar, Token
from typing import Any

import sentry_sdk

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


class AttachmentContextFilter(logging.Filter):
    """Inject the current batch and attachment from ContextVars into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - formatting only
        context = _log_context.get({})
        record.batch = context.get("batch")
        record.attachment_id = context.get("attachment_id")
        return True


def push_batch_context(batch: int) -> Token:
    return _log_context.set({"batch": batch, "attachment_id": None})


def push_attachment_context(attachment_id: int) -> Token:
    context = dict(_log_context.get({}))
    context["attachment_id"] = attachment_id
    sentry_sdk.set_tag("attachment_id", str(attachment_id))
    return _log_context.set(context)


def pop_context(token: Token) -> None:
    _log_context.reset(token)


__all__ = [
    "AttachmentContextFilter",
    "push_attachment_context",
    "push_batch_context",
    "pop_context",
]
