"""Socket.IO instrumentation helpers."""

from __future__ import annotations

from app.obs import metrics


def connect(namespace: str) -> None:
	metrics.socket_connected(namespace)


def disconnect(namespace: str) -> None:
	metrics.socket_disconnected(namespace)


def event(namespace: str, name: str) -> None:
	metrics.socket_event(namespace, name)
