"""
Observability Module

OpenTelemetry tracing and metrics for lock requests.
- Every request runs inside an `advisory_lock.<mode>` span
- Counters for acquired and contended locks, histogram for wait time
- Config-driven: with observability disabled the OpenTelemetry API stays on
  its no-op providers
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from .exceptions import LockNotObtained

_initialized = False
_lock_metrics = None


def init_observability(config: Optional[Dict[str, Any]] = None) -> bool:
    """
    Install OpenTelemetry SDK providers from the `observability` config section.

    Args:
        config: Full configuration dict (see pg_advisory_lock.config)

    Returns:
        bool: True if providers were installed
    """
    global _initialized, _lock_metrics

    if _initialized:
        return True

    settings = (config or {}).get('observability', {})
    if not settings.get('enabled', False):
        return False

    resource = Resource.create({
        "service.name": settings.get('service_name', 'pg-advisory-lock'),
    })

    trace_provider = TracerProvider(resource=resource)
    metric_readers = []
    if settings.get('exporters', {}).get('console', False):
        trace_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        metric_readers.append(PeriodicExportingMetricReader(ConsoleMetricExporter()))
    trace.set_tracer_provider(trace_provider)

    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=metric_readers))

    # Instruments must be recreated against the new provider
    _lock_metrics = None
    _initialized = True
    return True


class LockMetrics:
    """Metrics collector for lock requests"""

    def __init__(self):
        meter = metrics.get_meter(__name__)

        self.acquired = meter.create_counter(
            name="advisory_lock.acquired.total",
            description="Locks successfully acquired",
            unit="1"
        )

        self.contended = meter.create_counter(
            name="advisory_lock.contended.total",
            description="Non-blocking requests that found the lock held",
            unit="1"
        )

        self.acquire_duration = meter.create_histogram(
            name="advisory_lock.acquire.duration.seconds",
            description="Time spent waiting for a lock",
            unit="s"
        )


def get_metrics() -> LockMetrics:
    """Get or create global metrics instance"""
    global _lock_metrics
    if _lock_metrics is None:
        _lock_metrics = LockMetrics()
    return _lock_metrics


def _request_attributes(request) -> Dict[str, Any]:
    attributes = {
        "lock.name": str(request.name),
        "lock.wait": request.wait,
        "lock.shared": request.shared,
        "lock.transaction": request.transaction,
    }
    if request.id is not None:
        attributes["lock.id"] = str(request.id)
    return attributes


@contextmanager
def lock_span(request) -> Generator[Any, None, None]:
    """Span covering one lock request, from acquisition to release."""
    tracer = trace.get_tracer(__name__)
    mode = "wait" if request.wait else "try"
    with tracer.start_as_current_span(
        f"advisory_lock.{mode}",
        attributes=_request_attributes(request),
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


@contextmanager
def record_acquisition(request) -> Generator[None, None, None]:
    """Record wait time and outcome of one acquisition statement."""
    lock_metrics = get_metrics()
    attributes = {"lock.name": str(request.name), "lock.wait": request.wait}
    start_time = time.monotonic()
    try:
        yield
    except LockNotObtained:
        lock_metrics.contended.add(1, attributes)
        raise
    else:
        lock_metrics.acquired.add(1, attributes)
        trace.get_current_span().add_event("lock_acquired", {"lock.name": str(request.name)})
    finally:
        lock_metrics.acquire_duration.record(time.monotonic() - start_time, attributes)
