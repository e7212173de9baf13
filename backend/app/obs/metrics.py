"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Histogram

log = logging.getLogger(__name__)


REQUEST_COUNTER = Counter(
	"metabento_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"metabento_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"metabento_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"metabento_socketio_events_total",
	"Socket.IO events emitted per namespace",
	["namespace", "event"],
)

AUTH_FAILURES = Counter(
	"metabento_auth_failures_total",
	"Rejected authentication attempts",
	["reason"],
)

IDENTITY_REGISTER = Counter(
	"metabento_identity_register_total",
	"Accounts registered",
)

IDENTITY_LOGIN = Counter(
	"metabento_identity_login_total",
	"Successful logins",
)

IDENTITY_REJECTS = Counter(
	"metabento_identity_rejects_total",
	"Identity requests rejected",
	["reason"],
)

PROFILE_VIEWS = Counter(
	"metabento_profile_views_total",
	"Profile views by non-owners",
)

CONNECTIONS_CREATED = Counter(
	"metabento_connections_created_total",
	"Mutual connections created",
	["connection_type"],
)

POINTS_CREDITED = Counter(
	"metabento_points_credited_total",
	"A-Points credited",
	["reason"],
)

POINTS_DEBITED = Counter(
	"metabento_points_debited_total",
	"A-Points debited",
	["reason"],
)

ACHIEVEMENTS_UNLOCKED = Counter(
	"metabento_achievements_unlocked_total",
	"Achievements unlocked",
	["achievement_type"],
)

LEVEL_UPS = Counter(
	"metabento_level_ups_total",
	"Level increases",
)

SWAPS_REQUESTED = Counter(
	"metabento_token_swaps_total",
	"Token swaps recorded as pending",
)

LEDGER_ERRORS = Counter(
	"metabento_ledger_errors_total",
	"Ledger operations rejected",
	["operation", "reason"],
)

NOTIFICATIONS_PUBLISHED = Counter(
	"metabento_notifications_published_total",
	"Ledger notifications published",
	["kind", "result"],
)

REDIS_UP = Gauge(
	"metabento_redis_up",
	"Redis availability as seen by the API",
)

POSTGRES_UP = Gauge(
	"metabento_postgres_up",
	"Postgres availability as seen by the API",
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def auth_failed(reason: str) -> None:
	AUTH_FAILURES.labels(reason=reason).inc()


def inc_identity_register() -> None:
	IDENTITY_REGISTER.inc()


def inc_identity_login() -> None:
	IDENTITY_LOGIN.inc()


def inc_identity_reject(reason: str) -> None:
	IDENTITY_REJECTS.labels(reason=reason).inc()


def inc_profile_view() -> None:
	PROFILE_VIEWS.inc()


def inc_connection_created(connection_type: str) -> None:
	CONNECTIONS_CREATED.labels(connection_type=connection_type).inc()


def inc_points_credited(reason: str, amount: int) -> None:
	if amount > 0:
		POINTS_CREDITED.labels(reason=reason).inc(amount)


def inc_points_debited(reason: str, amount: int) -> None:
	if amount > 0:
		POINTS_DEBITED.labels(reason=reason).inc(amount)


def inc_achievement_unlocked(achievement_type: str) -> None:
	ACHIEVEMENTS_UNLOCKED.labels(achievement_type=achievement_type).inc()


def inc_level_up() -> None:
	LEVEL_UPS.inc()


def inc_swap_requested() -> None:
	SWAPS_REQUESTED.inc()


def inc_ledger_error(operation: str, reason: str) -> None:
	LEDGER_ERRORS.labels(operation=operation, reason=reason).inc()


def inc_notification(kind: str, result: str) -> None:
	NOTIFICATIONS_PUBLISHED.labels(kind=kind, result=result).inc()


def mark_redis(ok: bool) -> None:
	REDIS_UP.set(1 if ok else 0)


def mark_postgres(ok: bool) -> None:
	POSTGRES_UP.set(1 if ok else 0)
