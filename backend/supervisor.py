"""Disconnect detection, reconnection grace periods and eviction."""

import asyncio
import logging
from typing import Optional

import config
from room import LobbyState, Player, Room

logger = logging.getLogger(__name__)


class ConnectionSupervisor:
    def __init__(self, server):
        self.server = server

    # --- Reconnection ---

    def match_player(self, room: Room, name: str, token: str) -> Optional[Player]:
        """Find the player a joining socket should take over, if any.

        Session token first; case-insensitive name match only when the token
        is unknown for this room and the named player is currently disconnected.
        """
        session = self.server.sessions.get(token)
        if session and session.room_code == room.code:
            return room.players.get(session.player_id)
        if config.ALLOW_NAME_RECONNECT:
            player = room.find_by_name(name, include_pending=False)
            if player and player.disconnected:
                return player
        return None

    async def restore(self, room: Room, player: Player, conn_id: str, token: str) -> str:
        """Bind `player` to a new socket. Returns the session token now in use."""
        if not player.disconnected and player.conn_id and player.conn_id != conn_id:
            await self._kick(player.conn_id, "You joined from another device")
        player.cancel_grace()
        player.disconnected = False
        player.reconnect_seconds = 0
        player.conn_id = conn_id
        self.server.conn_rooms[conn_id] = room.code
        token = token or self.server.sessions.new_token()
        self.server.sessions.bind(token, player.name, room.code, player.id, conn_id)
        logger.info("Player '%s' reconnected to room %s", player.name, room.code)
        return token

    async def announce_reconnect(self, room: Room, player: Player):
        await self.server.broadcast(room, {"type": "player-reconnected", "name": player.name})
        await self.server.broadcast_lobby(room)
        if room.started:
            await self.server.broadcast_game_state(room)
        else:
            await self.server.lobby.evaluate(room)

    async def _kick(self, conn_id: str, message: str):
        self.server.conn_rooms.pop(conn_id, None)
        ws = self.server.connections.pop(conn_id, None)
        if ws is None:
            return
        try:
            await ws.send_json({"type": "kicked", "message": message})
            await ws.close()
        except Exception:
            logger.debug("Kicked socket %s was already closed", conn_id)

    # --- Disconnect ---

    async def on_disconnect(self, conn_id: str):
        code = self.server.conn_rooms.pop(conn_id, None)
        room = self.server.rooms.get(code) if code else None
        if room is None:
            return
        async with room.lock:
            pending = room.find_pending_by_conn(conn_id)
            if pending:
                room.remove_player(pending)
                self.server.sessions.drop_player(room.code, pending.id)
                logger.info("Pending player '%s' left room %s", pending.name, room.code)
                if room.is_empty():
                    await self.server.destroy_room(room.code, notify=False)
                return

            player = room.find_by_conn(conn_id)
            if not player:
                return
            player.disconnected = True
            player.conn_id = None
            player.reconnect_seconds = config.RECONNECT_SECONDS
            player.cancel_grace()
            player.grace_task = asyncio.create_task(self._grace_timer(room, player))
            logger.info("Player '%s' disconnected from room %s (%ds to reconnect)",
                        player.name, room.code, player.reconnect_seconds)

            await self.server.broadcast(room, {"type": "player-dc", "name": player.name,
                                               "seconds": player.reconnect_seconds})
            if room.lobby_state is LobbyState.COUNTING_DOWN:
                await self.server.lobby.cancel_countdown(room)
            else:
                await self.server.broadcast_lobby(room)
            if room.started and not await self.server.rounds.check_all_submitted(room):
                await self.server.broadcast_game_state(room)

    async def _grace_timer(self, room: Room, player: Player):
        try:
            while True:
                await asyncio.sleep(config.TICK_SECONDS)
                async with room.lock:
                    if player.grace_task is not asyncio.current_task() or not player.disconnected:
                        return
                    player.reconnect_seconds -= 1
                    if player.reconnect_seconds <= 0:
                        player.grace_task = None
                        await self.evict(room, player)
                        return
                    await self.server.broadcast(room, {"type": "player-dc", "name": player.name,
                                                       "seconds": player.reconnect_seconds})
                    if not room.started:
                        await self.server.broadcast_lobby(room)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Grace timer failed for %s in room %s", player.name, room.code)

    async def evict(self, room: Room, player: Player):
        """Grace period over: remove the player and repair the room."""
        room.remove_player(player)
        self.server.sessions.drop_player(room.code, player.id)
        logger.info("Player '%s' removed from room %s", player.name, room.code)
        await self.server.broadcast(room, {"type": "player-left", "name": player.name})

        if room.is_empty():
            await self.server.destroy_room(room.code, notify=False)
            return
        if room.started:
            await self.server.rounds.handle_player_removed(room, player)
        else:
            await self.server.broadcast_lobby(room)
            await self.server.lobby.evaluate(room)
