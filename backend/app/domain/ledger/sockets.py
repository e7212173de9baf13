"""Socket.IO namespace pushing ledger events to the affected user."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import socketio

from app.infra import jwt as jwt_helper
from app.obs import sockets_obs
from app.settings import settings

logger = logging.getLogger(__name__)

NAMESPACE = "/points"

_namespace: Optional["PointsNamespace"] = None


class PointsNamespace(socketio.AsyncNamespace):
    """Clients join `user:{id}` and receive level, achievement and connection events."""

    def __init__(self) -> None:
        super().__init__(NAMESPACE)
        self._users: Dict[str, str] = {}

    async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
        try:
            user_id = self._get_user_id(environ, auth)
        except Exception:
            raise ConnectionRefusedError("unauthorized") from None
        self._users[sid] = user_id
        sockets_obs.connect(NAMESPACE)
        await self.enter_room(sid, self.user_room(user_id))

    async def on_disconnect(self, sid: str) -> None:
        user_id = self._users.pop(sid, None)
        if user_id:
            sockets_obs.disconnect(NAMESPACE)
            await self.leave_room(sid, self.user_room(user_id))

    def _get_user_id(self, environ: dict, auth: Optional[dict]) -> str:
        payload = auth or {}
        token = payload.get("token")
        if token:
            claims = jwt_helper.decode_access(str(token))
            return str(claims["sub"])
        # dev tooling connects with a bare id
        user_id = payload.get("userId") or payload.get("user_id")
        if user_id and settings.is_dev():
            return str(user_id)
        raise ValueError("missing_token")

    @staticmethod
    def user_room(user_id: str) -> str:
        return f"user:{user_id}"


def set_namespace(namespace: Optional[PointsNamespace]) -> None:
    global _namespace
    _namespace = namespace


async def emit_event(user_id: str, kind: str, payload: Dict[str, Any]) -> None:
    if _namespace is None:
        return
    event = f"points:{kind}"
    await _namespace.emit(event, payload, room=PointsNamespace.user_room(str(user_id)))
    sockets_obs.event(NAMESPACE, event)
