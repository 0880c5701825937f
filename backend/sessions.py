"""Durable session tokens used to re-associate a new socket with a player."""

import logging
import secrets
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class SessionInfo:
    token: str
    name: str
    room_code: str
    player_id: str
    conn_id: str


class SessionRegistry:
    def __init__(self):
        self._sessions: Dict[str, SessionInfo] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, token: str) -> bool:
        return token in self._sessions

    @staticmethod
    def new_token() -> str:
        return secrets.token_urlsafe(16)

    def get(self, token: Optional[str]) -> Optional[SessionInfo]:
        if not token:
            return None
        return self._sessions.get(token)

    def bind(self, token: str, name: str, room_code: str, player_id: str,
             conn_id: str) -> SessionInfo:
        info = SessionInfo(token=token, name=name, room_code=room_code,
                           player_id=player_id, conn_id=conn_id)
        self._sessions[token] = info
        return info

    def drop_player(self, room_code: str, player_id: str):
        stale = [t for t, s in self._sessions.items()
                 if s.room_code == room_code and s.player_id == player_id]
        for token in stale:
            del self._sessions[token]

    def drop_room(self, room_code: str):
        stale = [t for t, s in self._sessions.items() if s.room_code == room_code]
        for token in stale:
            del self._sessions[token]
        if stale:
            logger.info("Dropped %d sessions for room %s", len(stale), room_code)

    def clear(self):
        self._sessions.clear()
