"""Transaction and span timing around datasource methods.

``read``, ``create``, ``update`` and ``remove`` each run inside their own
transaction (a root span). While one of them is in flight, ``to_app`` calls
made on its behalf are recorded as child spans of that transaction. Handles
live only for the duration of the wrapped call.
"""

import functools
import inspect
import logging
import time
from contextvars import ContextVar, Token
from typing import Any, Callable, List, Optional

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

from .constant import SPAN_OPERATIONS, TRANSACTION_OPERATIONS
from .exceptions import InstrumentationException
from .metrics import DATASOURCE_LATENCY
from .tracing import get_tracer

logger = logging.getLogger(__name__)

WRAPPED_ATTR = "__error_tracer_wrapped__"
INHERITED_ATTR = "__error_tracer_inherited__"

_current_transaction: ContextVar[Optional[Span]] = ContextVar(
    "error_tracer_transaction", default=None
)


def instrument_method(
    cls: type,
    name: str,
    before: Callable[[Any, tuple, dict], Any],
    after: Callable[[Any, Optional[BaseException]], None],
) -> bool:
    """Wrap ``cls.name`` with ``before`` and ``after`` hooks.

    ``before(instance, args, kwargs)`` runs first and its return value is
    passed to ``after(handle, error)`` once the call has returned or raised.
    Coroutine methods are awaited before ``after`` runs. Returns False when
    the method is already instrumented.
    """
    try:
        static = inspect.getattr_static(cls, name)
    except AttributeError:
        raise InstrumentationException(f"{cls.__name__} has no method {name!r}")
    if isinstance(static, (staticmethod, classmethod)) or not callable(static):
        raise InstrumentationException(
            f"{cls.__name__}.{name} is not an instance method"
        )

    original = getattr(cls, name)
    if getattr(original, WRAPPED_ATTR, None) is not None:
        return False

    if inspect.iscoroutinefunction(original):

        @functools.wraps(original)
        async def wrapper(self, *args, **kwargs):
            handle = before(self, args, kwargs)
            try:
                result = await original(self, *args, **kwargs)
            except BaseException as exc:
                after(handle, exc)
                raise
            after(handle, None)
            return result

    else:

        @functools.wraps(original)
        def wrapper(self, *args, **kwargs):
            handle = before(self, args, kwargs)
            try:
                result = original(self, *args, **kwargs)
            except BaseException as exc:
                after(handle, exc)
                raise
            after(handle, None)
            return result

    setattr(wrapper, WRAPPED_ATTR, original)
    setattr(wrapper, INHERITED_ATTR, name not in cls.__dict__)
    setattr(cls, name, wrapper)
    return True


def uninstrument_method(cls: type, name: str) -> bool:
    """Restore a method wrapped by ``instrument_method``."""
    wrapper = cls.__dict__.get(name)
    original = getattr(wrapper, WRAPPED_ATTR, None)
    if original is None:
        return False
    if getattr(wrapper, INHERITED_ATTR, False):
        delattr(cls, name)
    else:
        setattr(cls, name, original)
    return True


class _Handle:
    """Bookkeeping for one in-flight operation."""

    __slots__ = ("operation", "span", "started", "context_token", "transaction_token")

    def __init__(
        self,
        operation: str,
        span: Span,
        context_token: Optional[object] = None,
        transaction_token: Optional[Token] = None,
    ):
        self.operation = operation
        self.span = span
        self.started = time.perf_counter()
        self.context_token = context_token
        self.transaction_token = transaction_token


def current_transaction() -> Optional[Span]:
    """Return the transaction of the datasource operation in flight, if any."""
    return _current_transaction.get()


class DatasourceInstrumentation:
    """Start and finish transactions and spans for datasource methods."""

    def __init__(self, tracer: Optional[trace.Tracer] = None):
        self.tracer = tracer or get_tracer(__name__)

    def start_transaction(self, operation: str, instance: Any) -> _Handle:
        span = self.tracer.start_span(
            operation,
            context=otel_context.Context(),
            attributes={"datasource": type(instance).__name__},
        )
        context_token = otel_context.attach(trace.set_span_in_context(span))
        transaction_token = _current_transaction.set(span)
        return _Handle(operation, span, context_token, transaction_token)

    def finish_transaction(
        self, handle: _Handle, error: Optional[BaseException] = None
    ) -> None:
        try:
            if error is not None:
                handle.span.set_status(Status(StatusCode.ERROR, str(error)))
                handle.span.record_exception(error)
            handle.span.end()
            self._observe(handle)
        finally:
            _current_transaction.reset(handle.transaction_token)
            otel_context.detach(handle.context_token)

    def start_span(self, operation: str, instance: Any) -> Optional[_Handle]:
        """Start a child span, only when a transaction is in flight."""
        transaction = _current_transaction.get()
        if transaction is None:
            return None
        span = self.tracer.start_span(
            operation, context=trace.set_span_in_context(transaction)
        )
        return _Handle(operation, span)

    def end_span(
        self, handle: Optional[_Handle], error: Optional[BaseException] = None
    ) -> None:
        if handle is None:
            return
        if error is not None:
            handle.span.set_status(Status(StatusCode.ERROR, str(error)))
            handle.span.record_exception(error)
        else:
            handle.span.set_status(Status(StatusCode.OK))
        handle.span.end()
        self._observe(handle)

    def _observe(self, handle: _Handle) -> None:
        DATASOURCE_LATENCY.labels(operation=handle.operation).observe(
            time.perf_counter() - handle.started
        )

    def instrument(self, datasource_cls: type) -> List[str]:
        """Wrap the datasource methods present on ``datasource_cls``."""
        wrapped = []
        for method, operation in TRANSACTION_OPERATIONS.items():
            if self._wrap(
                datasource_cls,
                method,
                functools.partial(self._before_transaction, operation),
                self.finish_transaction,
            ):
                wrapped.append(method)
        for method, operation in SPAN_OPERATIONS.items():
            if self._wrap(
                datasource_cls,
                method,
                functools.partial(self._before_span, operation),
                self.end_span,
            ):
                wrapped.append(method)
        logger.info("Instrumented %s: %s", datasource_cls.__name__, ", ".join(wrapped))
        return wrapped

    def uninstrument(self, datasource_cls: type) -> None:
        for method in list(TRANSACTION_OPERATIONS) + list(SPAN_OPERATIONS):
            uninstrument_method(datasource_cls, method)

    def _wrap(self, cls: type, method: str, before: Callable, after: Callable) -> bool:
        if not hasattr(cls, method):
            logger.debug("%s has no %s method, skipping", cls.__name__, method)
            return False
        return instrument_method(cls, method, before, after)

    def _before_transaction(self, operation: str, instance: Any, args, kwargs) -> _Handle:
        return self.start_transaction(operation, instance)

    def _before_span(self, operation: str, instance: Any, args, kwargs) -> Optional[_Handle]:
        return self.start_span(operation, instance)


__all__ = [
    "DatasourceInstrumentation",
    "current_transaction",
    "instrument_method",
    "uninstrument_method",
]
