"""Describe pipeline: parse, fetch, normalize and render identifiers."""

from __future__ import annotations

from concurrent.futures import CancelledError, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
import json
import logging
import threading
import time
from typing import Any, Callable, Iterable, Protocol

from .errors import DxError, GatewayError, NormalizeError, ParseError
from .formatters import render, render_trace
from .identifiers import ObjectId, parse
from .models import Descriptor, FetchTrace, RenderOptions
from .normalizers import ClassNormalizer

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_USAGE = 2
EXIT_ALL_FAILED = 3
EXIT_FATAL = 10
EXIT_INTERRUPTED = 130


class ObjectGateway(Protocol):
    """Anything that can fetch a raw describe payload for an id."""

    def fetch(self, object_id: ObjectId, *, try_number: int | None = None) -> dict:
        ...


class _Cancelled(Exception):
    """Batch stopped before this identifier was fetched."""


@dataclass(frozen=True)
class DescribeError:
    raw: str
    category: str
    code: str
    message: str

    @classmethod
    def capture(cls, raw: str, exc: DxError) -> DescribeError:
        if isinstance(exc, ParseError):
            category = "parse"
        elif isinstance(exc, NormalizeError):
            category = "normalize"
        else:
            category = "gateway"
        return cls(raw, category, exc.code, exc.message)

    def as_dict(self) -> dict:
        return {"id": self.raw, "error": {"category": self.category, "code": self.code, "message": self.message}}

    def __str__(self) -> str:
        return f"{self.raw}: {self.category}: {self.code}: {self.message}"


@dataclass(frozen=True)
class DescribeResult:
    raw: str
    output: str | None = None
    trace: str | None = None
    error: DescribeError | None = None
    descriptor: Descriptor | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchReport:
    results: list[DescribeResult] = field(default_factory=list)
    total: int = 0
    fatal: GatewayError | None = None
    interrupted: bool = False

    @property
    def failures(self) -> list[DescribeResult]:
        return [r for r in self.results if not r.ok]

    @property
    def exit_code(self) -> int:
        if self.interrupted:
            return EXIT_INTERRUPTED
        if self.fatal is not None:
            return EXIT_FATAL
        failed = len(self.failures)
        if failed == 0:
            return EXIT_OK
        if failed == len(self.results):
            return EXIT_ALL_FAILED
        return EXIT_PARTIAL


# ---------------------------------------------------------------------------
# Fetch with retry
# ---------------------------------------------------------------------------


def _shape(value: Any) -> tuple[int, int]:
    objects = arrays = 0
    children: Iterable[Any] = ()
    if isinstance(value, dict):
        children = value.values()
    elif isinstance(value, list):
        children = value
    for child in children:
        if isinstance(child, dict):
            objects += 1
        elif isinstance(child, list):
            arrays += 1
        sub_objects, sub_arrays = _shape(child)
        objects += sub_objects
        arrays += sub_arrays
    return objects, arrays


def summarize_payload(payload: dict, *, elapsed_ms: int, attempts: int) -> FetchTrace:
    objects, arrays = _shape(payload)
    return FetchTrace(
        elapsed_ms=elapsed_ms,
        attempts=attempts,
        payload_bytes=len(json.dumps(payload).encode("utf-8")),
        payload_keys=tuple(payload),
        nested_objects=objects,
        nested_arrays=arrays,
    )


def backoff_seconds(attempt: int, retry_backoff_ms: int, retry_after: float | None = None) -> float:
    if retry_after:
        return retry_after
    return (retry_backoff_ms / 1000.0) * (2**attempt)


def fetch_with_retry(
    gateway: ObjectGateway,
    object_id: ObjectId,
    *,
    retries: int = 2,
    retry_backoff_ms: int = 250,
    try_number: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
    should_stop: Callable[[], bool] | None = None,
) -> tuple[dict, FetchTrace]:
    """Fetch one payload, retrying only transient failures."""
    started = time.monotonic()
    for attempt in range(retries + 1):
        try:
            payload = gateway.fetch(object_id, try_number=try_number)
        except GatewayError as exc:
            if not exc.retryable or attempt >= retries:
                raise
            delay = backoff_seconds(attempt, retry_backoff_ms, exc.retry_after)
            logger.info(
                "Transient failure fetching %s (%s), retrying in %.2fs (%d/%d)",
                object_id,
                exc.code,
                delay,
                attempt + 1,
                retries,
            )
            sleep(delay)
            if should_stop is not None and should_stop():
                raise _Cancelled(str(object_id)) from exc
            continue

        elapsed_ms = int((time.monotonic() - started) * 1000)
        return payload, summarize_payload(payload, elapsed_ms=elapsed_ms, attempts=attempt + 1)

    raise AssertionError("unreachable")


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def describe_one(
    raw: str,
    opts: RenderOptions,
    gateway: ObjectGateway,
    *,
    normalizer: ClassNormalizer,
    retries: int = 2,
    retry_backoff_ms: int = 250,
    try_number: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
    stop: threading.Event | None = None,
) -> DescribeResult:
    """Run the whole pipeline for one identifier.

    Per-identifier failures come back inside the result. Only a fatal
    gateway error (invalid session) is raised.
    """
    try:
        object_id = parse(raw)
    except ParseError as exc:
        logger.debug("Cannot parse %r: %s", raw, exc)
        return DescribeResult(raw, error=DescribeError.capture(raw, exc))

    if stop is not None and stop.is_set():
        raise _Cancelled(raw)

    try:
        payload, trace = fetch_with_retry(
            gateway,
            object_id,
            retries=retries,
            retry_backoff_ms=retry_backoff_ms,
            try_number=try_number,
            sleep=sleep,
            should_stop=stop.is_set if stop is not None else None,
        )
    except GatewayError as exc:
        if exc.fatal:
            raise
        logger.debug("Fetch failed for %s: %s", raw, exc)
        return DescribeResult(raw, error=DescribeError.capture(raw, exc))

    try:
        descriptor = normalizer.normalize(object_id.object_class, object_id, payload)
    except NormalizeError as exc:
        logger.debug("Payload for %s rejected: %s", raw, exc)
        return DescribeResult(raw, error=DescribeError.capture(raw, exc))

    return DescribeResult(
        raw,
        output=render(descriptor, opts),
        trace=render_trace(str(object_id), trace) if opts.debug else None,
        descriptor=descriptor,
    )


def describe_many(
    raws: Iterable[str],
    opts: RenderOptions,
    gateway: ObjectGateway,
    *,
    normalizer: ClassNormalizer | None = None,
    max_concurrency: int = 8,
    retries: int = 2,
    retry_backoff_ms: int = 250,
    try_number: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchReport:
    """Describe every identifier, in input order, on a bounded worker pool."""
    raws = list(raws)
    normalizer = normalizer or ClassNormalizer()
    stop = threading.Event()

    def _run(raw: str) -> DescribeResult:
        return describe_one(
            raw,
            opts,
            gateway,
            normalizer=normalizer,
            retries=retries,
            retry_backoff_ms=retry_backoff_ms,
            try_number=try_number,
            sleep=sleep,
            stop=stop,
        )

    results: list[DescribeResult | None] = [None] * len(raws)
    fatal: GatewayError | None = None
    fatal_index = len(raws)
    interrupted = False

    if len(raws) <= 1 or max_concurrency <= 1:
        try:
            for idx, raw in enumerate(raws):
                try:
                    results[idx] = _run(raw)
                except GatewayError as exc:
                    fatal, fatal_index = exc, idx
                    break
        except KeyboardInterrupt:
            interrupted = True
    else:
        executor = ThreadPoolExecutor(max_workers=min(len(raws), max_concurrency))
        future_to_index = {executor.submit(_run, raw): idx for idx, raw in enumerate(raws)}
        try:
            for future in as_completed(future_to_index):
                idx = future_to_index[future]
                try:
                    results[idx] = future.result()
                except GatewayError as exc:
                    stop.set()
                    for pending in future_to_index:
                        pending.cancel()
                    if idx < fatal_index:
                        fatal, fatal_index = exc, idx
                except (_Cancelled, CancelledError):
                    pass
        except KeyboardInterrupt:
            stop.set()
            interrupted = True
        finally:
            executor.shutdown(wait=not interrupted, cancel_futures=True)

    if fatal is not None:
        logger.debug("Aborting batch at %s: %s", raws[fatal_index], fatal)
    if interrupted:
        logger.debug("Interrupted; reporting the completed in-order prefix")

    reported: list[DescribeResult] = []
    for result in results[:fatal_index]:
        if result is None:
            break
        reported.append(result)
    return BatchReport(results=reported, total=len(raws), fatal=fatal, interrupted=interrupted)
