"""Pre-game readiness protocol and start countdown."""

import asyncio
import logging

import config
from errors import RuleViolation
from room import LobbyState, Room

logger = logging.getLogger(__name__)


class LobbyController:
    def __init__(self, server):
        self.server = server

    @staticmethod
    def all_ready(room: Room) -> bool:
        active = room.active_players()
        return len(active) >= config.MIN_PLAYERS and all(p.ready for p in active)

    async def toggle_ready(self, room: Room, conn_id: str):
        if room.started:
            raise RuleViolation("game already started")
        player = room.find_by_conn(conn_id)
        if not player:
            raise RuleViolation("not a lobby member")
        player.ready = not player.ready
        await self.server.broadcast_lobby(room)
        await self.evaluate(room)

    async def evaluate(self, room: Room):
        """Start or cancel the countdown depending on the all-ready condition."""
        if room.started:
            return
        all_ready = self.all_ready(room)
        if all_ready and room.lobby_state is LobbyState.IDLE:
            room.set_lobby_state(LobbyState.COUNTING_DOWN)
            room.cancel_countdown()
            room.countdown_value = config.COUNTDOWN_SECONDS
            room.countdown_task = asyncio.create_task(self._countdown(room))
            logger.info("Room %s: everyone ready, starting in %ds", room.code, room.countdown_value)
            await self.server.broadcast(room, {"type": "countdown",
                                               "secondsRemaining": room.countdown_value})
            await self.server.broadcast_lobby(room)
        elif not all_ready and room.lobby_state is LobbyState.COUNTING_DOWN:
            await self.cancel_countdown(room)

    async def cancel_countdown(self, room: Room):
        if room.lobby_state is not LobbyState.COUNTING_DOWN:
            return
        room.cancel_countdown()
        room.set_lobby_state(LobbyState.IDLE)
        logger.info("Room %s: countdown cancelled", room.code)
        await self.server.broadcast(room, {"type": "countdown-cancelled"})
        await self.server.broadcast_lobby(room)

    async def _countdown(self, room: Room):
        try:
            while True:
                await asyncio.sleep(config.TICK_SECONDS)
                async with room.lock:
                    if (room.countdown_task is not asyncio.current_task()
                            or room.lobby_state is not LobbyState.COUNTING_DOWN):
                        return
                    room.countdown_value -= 1
                    await self.server.broadcast(room, {"type": "countdown",
                                                       "secondsRemaining": room.countdown_value})
                    if room.countdown_value <= 0:
                        room.countdown_task = None
                        room.countdown_value = 0
                        await self.server.rounds.start_game(room)
                        return
                    await self.server.broadcast_lobby(room)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Countdown failed in room %s", room.code)
