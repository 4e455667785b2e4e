"""Request & Connection Context.

Context variables binding request ids, user ids and socket connection
ids to every log entry emitted while handling a request or event.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
_user_id_var: ContextVar[str] = ContextVar("user_id", default="")
_connection_id_var: ContextVar[str] = ContextVar("connection_id", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def generate_request_id() -> str:
    """Generate a unique request ID using UUID4."""
    return str(uuid.uuid4())


def get_request_id() -> str:
    """Get the current request ID from context."""
    return _request_id_var.get()


def get_user_id() -> str:
    """Get the current user ID from context."""
    return _user_id_var.get()


def get_connection_id() -> str:
    """Get the socket connection ID bound to the current context."""
    return _connection_id_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all context variables as a dictionary for log binding."""
    ctx = {}
    for key, var in (
        ("request_id", _request_id_var),
        ("correlation_id", _correlation_id_var),
        ("user_id", _user_id_var),
        ("connection_id", _connection_id_var),
    ):
        value = var.get()
        if value:
            ctx[key] = value
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class RequestContext:
    """Context manager for request-scoped logging context.

    Binds request_id, user_id, correlation_id and, for socket handlers,
    connection_id to all log entries within the context. Previous values
    are restored on exit so contexts nest.

    Example:
        with RequestContext(user_id="u1", connection_id="c0ffee"):
            logger.info("routing event")  # includes user_id, connection_id
    """

    request_id: str = ""
    correlation_id: str = ""
    user_id: str = ""
    connection_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    _tokens: list = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.request_id:
            self.request_id = generate_request_id()
        if not self.correlation_id:
            self.correlation_id = self.request_id

    def __enter__(self) -> "RequestContext":
        self._tokens = [
            (_request_id_var, _request_id_var.set(self.request_id)),
            (_correlation_id_var, _correlation_id_var.set(self.correlation_id)),
            (_user_id_var, _user_id_var.set(self.user_id)),
            (_connection_id_var, _connection_id_var.set(self.connection_id)),
            (_extra_context_var, _extra_context_var.set(self.extra.copy())),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since context was created."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the context."""
        current = _extra_context_var.get()
        _extra_context_var.set({**current, **kwargs})
        self.extra.update(kwargs)
