"""Run conversion requests and collect one result per request."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Mapping, Optional, Sequence, TypeVar

from .categories import classify, requires_credential
from .errors import (
    ConversionCancelledError,
    ConversionTimeoutError,
    CredentialRequiredError,
    EmptyConversionError,
)
from .models import Category, ConversionRequest, ConversionResult, ItemKind
from .naming import sanitize_filename
from .registry import ConversionContext, ConverterRegistry

__all__ = [
    "DEFAULT_MAX_WORKERS",
    "ProgressCallback",
    "convert_many",
    "convert_one",
]

DEFAULT_MAX_WORKERS = 4
_POLL_INTERVAL = 0.05

ProgressCallback = Callable[[int], None]
T = TypeVar("T")

_logger = logging.getLogger(__name__)


def convert_one(
    request: ConversionRequest,
    *,
    registry: ConverterRegistry,
    timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    logger: Optional[logging.Logger] = None,
) -> ConversionResult:
    """Convert ``request``; every failure is returned as a failed result."""

    log = logger or _logger
    name = sanitize_filename(request.name)
    category = classify(request.kind, request.extension)
    source_url = _source_url(request)

    try:
        if cancel_event is not None and cancel_event.is_set():
            raise ConversionCancelledError("Conversion cancelled")
        credential = (request.credential or "").strip()
        if requires_credential(category) and not credential:
            raise CredentialRequiredError(
                f"An API key is required to convert {category.value} items."
            )
        context = ConversionContext(
            name=request.name,
            credential=request.credential,
            options=request.options,
        )
        output = _call_with_timeout(
            lambda: registry.dispatch(request.kind, request.content, context),
            timeout=timeout,
            cancel_event=cancel_event,
        )
        if not output.content.strip():
            raise EmptyConversionError("Conversion produced no content")
    except Exception as exc:
        reason = str(exc) or type(exc).__name__
        log.error(
            "Failed to convert item",
            extra={
                "item": request.name,
                "kind": request.kind.value,
                "category": category.value,
                "error_type": type(exc).__name__,
                "reason": reason,
            },
        )
        return ConversionResult.failed(
            kind=request.kind,
            category=category,
            name=name,
            error=reason,
            source_url=source_url,
        )

    log.info(
        "Converted item",
        extra={
            "item": request.name,
            "kind": request.kind.value,
            "category": category.value,
            "content_length": len(output.content),
            "image_count": len(output.images),
            "page_count": len(output.pages),
        },
    )
    return ConversionResult.succeeded(
        kind=request.kind,
        category=category,
        name=name,
        output=output,
        source_url=source_url,
    )


def convert_many(
    requests: Sequence[ConversionRequest],
    *,
    registry: ConverterRegistry,
    max_workers: int = DEFAULT_MAX_WORKERS,
    timeout: Optional[float] = None,
    progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    logger: Optional[logging.Logger] = None,
) -> list[ConversionResult]:
    """Convert ``requests`` concurrently, returning results in input order.

    Items run on a pool of at most ``max_workers`` threads. Per-item faults,
    timeouts and cancellation all surface as failed results, so the call
    itself only raises when the caller is interrupted. ``progress`` receives
    the completed percentage (rounded down) after each item and always ends
    on 100.
    """

    log = logger or _logger
    items = list(requests)
    total = len(items)
    cancel = cancel_event if cancel_event is not None else threading.Event()
    reporter = _ProgressReporter(progress, total, log)
    results: list[Optional[ConversionResult]] = [None] * total

    workers = max(1, min(int(max_workers), total or 1))
    log.info(
        "Starting batch conversion",
        extra={"item_count": total, "max_workers": workers, "timeout": timeout},
    )

    if items:
        executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="markpack-item"
        )
        try:
            futures: Mapping[Future[ConversionResult], int] = {
                executor.submit(
                    convert_one,
                    request,
                    registry=registry,
                    timeout=timeout,
                    cancel_event=cancel,
                    logger=log,
                ): index
                for index, request in enumerate(items)
            }
            for future in as_completed(futures):
                index = futures[future]
                results[index] = _collect(future, items[index], log)
                reporter.advance()
        except BaseException:
            # Interrupted by the caller: stop workers from starting new items.
            cancel.set()
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    reporter.finish()
    ordered = [result for result in results if result is not None]

    log.info(
        "Completed batch conversion",
        extra={
            "item_count": total,
            "success_count": sum(1 for result in ordered if result.success),
            "failure_count": sum(1 for result in ordered if not result.success),
            "cancelled": cancel.is_set(),
        },
    )
    return ordered


def _collect(
    future: Future[ConversionResult],
    request: ConversionRequest,
    log: logging.Logger,
) -> ConversionResult:
    try:
        return future.result()
    except Exception as exc:
        log.exception(
            "Unexpected error while converting", extra={"item": request.name}
        )
        return ConversionResult.failed(
            kind=request.kind,
            category=_safe_category(request),
            name=sanitize_filename(request.name),
            error=str(exc) or type(exc).__name__,
            source_url=_source_url(request),
        )


def _safe_category(request: ConversionRequest) -> Category:
    try:
        return classify(request.kind, request.extension)
    except Exception:
        return Category.OTHER


def _source_url(request: ConversionRequest) -> Optional[str]:
    if request.kind not in (ItemKind.URL, ItemKind.PARENT_URL):
        return None
    content = request.content
    if isinstance(content, Mapping):
        content = content.get("url") or content.get("parenturl")
    if isinstance(content, str) and content.strip():
        return content.strip()
    return None


def _call_with_timeout(
    func: Callable[[], T],
    *,
    timeout: Optional[float],
    cancel_event: Optional[threading.Event],
) -> T:
    """Run ``func`` on a daemon thread, giving up on timeout or cancellation.

    An abandoned converter keeps running in the background until it returns;
    its result is discarded.
    """

    limited = timeout is not None and timeout > 0
    if not limited and cancel_event is None:
        return func()

    outcome: dict[str, object] = {}
    finished = threading.Event()

    def _target() -> None:
        try:
            outcome["value"] = func()
        except BaseException as exc:  # relayed to the waiting thread
            outcome["error"] = exc
        finally:
            finished.set()

    worker = threading.Thread(
        target=_target, name="markpack-converter", daemon=True
    )
    worker.start()

    deadline = (
        time.monotonic() + timeout  # type: ignore[operator]
        if limited
        else None
    )
    while True:
        wait_for = _POLL_INTERVAL
        if deadline is not None:
            wait_for = max(0.0, min(wait_for, deadline - time.monotonic()))
        if finished.wait(wait_for):
            break
        if cancel_event is not None and cancel_event.is_set():
            raise ConversionCancelledError("Conversion cancelled")
        if deadline is not None and time.monotonic() >= deadline:
            raise ConversionTimeoutError(
                f"Conversion timed out after {timeout:g} seconds"
            )

    if "error" in outcome:
        raise outcome["error"]  # type: ignore[misc]
    return outcome["value"]  # type: ignore[return-value]


class _ProgressReporter:
    """Forward completion percentages to an optional callback."""

    def __init__(
        self,
        callback: Optional[ProgressCallback],
        total: int,
        logger: logging.Logger,
    ) -> None:
        self._callback = callback
        self._total = total
        self._completed = 0
        self._last: Optional[int] = None
        self._logger = logger

    def advance(self) -> None:
        self._completed += 1
        self._emit(self._completed * 100 // self._total)

    def finish(self) -> None:
        if self._last != 100:
            self._emit(100)

    def _emit(self, value: int) -> None:
        self._last = value
        if self._callback is None:
            return
        try:
            self._callback(value)
        except Exception:
            self._logger.warning("Progress callback failed", exc_info=True)
