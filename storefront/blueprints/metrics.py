"""
Prometheus metrics blueprint.

Exposes /metrics with HTTP request metrics and order reconciliation counters.
The endpoint is unauthenticated; restrict it to the monitoring network.
"""
import os
import time

from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share counters through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    _metric_registry = None
else:
    registry = REGISTRY
    _metric_registry = REGISTRY

http_requests_total = Counter(
    'http_requests_total',
    'HTTP responses by route and status',
    ['method', 'route', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'route'],
    registry=_metric_registry,
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
)

http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'Requests currently being handled',
    registry=_metric_registry,
    multiprocess_mode='livesum'
)

orders_reconciled_total = Counter(
    'orders_reconciled_total',
    'Order reconciliation outcomes by entry point',
    ['entry_point', 'outcome'],
    registry=_metric_registry
)


def record_reconciliation(entry_point: str, outcome: str):
    """Count one reconciliation attempt (entry_point: redirect, webhook, cod, cli)."""
    orders_reconciled_total.labels(entry_point=entry_point, outcome=outcome).inc()


def _route_label():
    # Rule pattern keeps label cardinality bounded (/api/orders/<int:order_id>)
    if request.url_rule is not None:
        return request.url_rule.rule
    return 'unmatched'


def setup_metrics_instrumentation(app):
    """Time every request and count responses per route."""

    @app.before_request
    def start_request_timer():
        g._metrics_started = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def observe_response(response):
        started = g.pop('_metrics_started', None)
        if started is None:
            return response

        route = _route_label()
        try:
            http_request_duration_seconds.labels(method=request.method, route=route).observe(
                time.perf_counter() - started
            )
            http_requests_total.labels(
                method=request.method, route=route, http_status=response.status_code
            ).inc()
        except Exception as e:
            app.logger.warning(f"Failed to record metrics: {e}")
        finally:
            http_requests_in_flight.dec()

        return response


@metrics_bp.route('/metrics')
def metrics():
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
