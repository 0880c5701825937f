"""WebSocket game server: room registry, message dispatch and broadcasting."""

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PayloadError
from typing import Dict, List, Optional
import json
import time
import asyncio
import logging
import random
import uuid

import config
from deck import CardPool, DeckManager
from errors import CapacityError, NotFoundError, RuleViolation, ValidationError
from lobby import LobbyController
from messages import (
    JoinRoomRequest, PickRequest, RevealCardRequest, SubmitRequest, first_error_message,
)
from room import Player, Room, new_player_id
from round_engine import RoundEngine
from sessions import SessionRegistry
from supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

ACK_EVENTS = ("create-room", "join-room")


class GameServer:
    """Owns every room, the session registry and the live sockets."""

    def __init__(self, card_pool: CardPool):
        self.card_pool = card_pool
        self.rooms: Dict[str, Room] = {}
        self.sessions = SessionRegistry()
        self.connections: Dict[str, WebSocket] = {}  # conn_id -> socket
        self.conn_rooms: Dict[str, str] = {}  # conn_id -> room code
        self.msg_timestamps: Dict[str, list] = {}
        self.lobby = LobbyController(self)
        self.rounds = RoundEngine(self)
        self.supervisor = ConnectionSupervisor(self)
        self._cleanup_task: Optional[asyncio.Task] = None

    # --- Room registry ---

    def start_cleanup_loop(self):
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_expired_rooms())

    def stop_cleanup_loop(self):
        if self._cleanup_task:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    async def _cleanup_expired_rooms(self):
        while True:
            try:
                await asyncio.sleep(60)
                expired = [code for code, room in self.rooms.items() if room.is_expired()]
                for code in expired:
                    room = self.rooms.get(code)
                    if room is None:
                        continue
                    async with room.lock:
                        await self.destroy_room(code)
                    logger.info("Cleaned up expired room %s", code)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in room cleanup loop")

    def generate_room_code(self) -> str:
        for _ in range(config.MAX_ROOM_CODE_ATTEMPTS):
            code = ''.join(random.choices(config.ROOM_CODE_CHARS, k=config.ROOM_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise RuntimeError("Failed to generate unique room code")

    def create_room(self, code: Optional[str] = None) -> Room:
        if len(self.rooms) >= config.MAX_ROOMS:
            raise CapacityError("Too many active rooms. Try again later.")
        code = code or self.generate_room_code()
        room = Room(code, DeckManager(self.card_pool))
        self.rooms[code] = room
        logger.info("Room %s created", code)
        return room

    async def destroy_room(self, code: str, notify: bool = True):
        """Tear a room down: cancel every timer, drop its sessions and sockets.

        Callers must hold the room's lock.
        """
        room = self.rooms.pop(code, None)
        if room is None:
            return
        room.cancel_all_timers()
        if notify:
            await self.broadcast(room, {"type": "full-reset"})
        self.sessions.drop_room(code)
        for conn_id in [c for c, rc in self.conn_rooms.items() if rc == code]:
            del self.conn_rooms[conn_id]
        logger.info("Room %s destroyed", code)

    # --- Outbound ---

    def room_connections(self, room: Room) -> List[str]:
        conns = [p.conn_id for p in room.players.values() if p.conn_id and not p.disconnected]
        conns += [p.conn_id for p in room.pending.values() if p.conn_id]
        return conns

    async def send(self, conn_id: str, message: dict):
        ws = self.connections.get(conn_id)
        if ws is None:
            return
        try:
            await ws.send_json(message)
        except Exception:
            logger.debug("Dropping unreachable socket %s", conn_id)
            self.connections.pop(conn_id, None)

    async def broadcast(self, room: Room, message: dict):
        for conn_id in self.room_connections(room):
            await self.send(conn_id, message)

    async def broadcast_lobby(self, room: Room):
        await self.broadcast(room, room.lobby_snapshot())

    async def broadcast_game_state(self, room: Room):
        """Per-socket snapshots: each player only ever receives their own hand."""
        for player in list(room.players.values()):
            if player.conn_id and not player.disconnected:
                await self.send(player.conn_id, room.game_snapshot(player))
        for player in list(room.pending.values()):
            if player.conn_id:
                await self.send(player.conn_id, room.game_snapshot(player, pending=True))

    async def _ack(self, conn_id: str, message: dict, result: dict):
        ack = {"type": "ack", "event": message.get("type"), "ref": message.get("ref")}
        ack.update(result)
        await self.send(conn_id, ack)

    # --- Connection loop ---

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        conn_id = uuid.uuid4().hex
        self.connections[conn_id] = websocket
        await websocket.send_json({"type": "connected", "connectionId": conn_id})

        try:
            while True:
                data = await websocket.receive_text()

                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    await websocket.send_json({"type": "error", "message": "Message too large"})
                    continue

                now = time.time()
                timestamps = self.msg_timestamps.setdefault(conn_id, [])
                timestamps[:] = [t for t in timestamps if now - t < 1.0]
                if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
                    await websocket.send_json({"type": "error", "message": "Too many messages"})
                    continue
                timestamps.append(now)

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    message = None
                if not isinstance(message, dict):
                    await websocket.send_json({"type": "error", "message": "Invalid message format"})
                    continue

                try:
                    await self.handle_message(conn_id, message)
                except Exception:
                    logger.exception("Error handling %s from %s", message.get("type"), conn_id)
        except WebSocketDisconnect:
            logger.info("Client %s disconnected", conn_id)
        except Exception:
            logger.exception("WebSocket error for client %s", conn_id)
        finally:
            await self.disconnect(conn_id)

    async def disconnect(self, conn_id: str):
        self.connections.pop(conn_id, None)
        self.msg_timestamps.pop(conn_id, None)
        await self.supervisor.on_disconnect(conn_id)

    # --- Inbound ---

    async def handle_message(self, conn_id: str, message: dict):
        msg_type = message.get("type")
        try:
            if msg_type == "create-room":
                room = self.create_room()
                await self._ack(conn_id, message, {"code": room.code})
            elif msg_type == "join-room":
                await self.join_room(conn_id, message)
            else:
                await self._handle_game_action(conn_id, msg_type, message)
        except (ValidationError, NotFoundError, CapacityError) as exc:
            if msg_type in ACK_EVENTS:
                await self._ack(conn_id, message, {"ok": False, "error": str(exc)})
            else:
                logger.info("Rejected %s from %s: %s", msg_type, conn_id, exc)
        except RuleViolation as exc:
            logger.debug("Ignored %s from %s: %s", msg_type, conn_id, exc)

    async def _handle_game_action(self, conn_id: str, msg_type: str, message: dict):
        room = self.rooms.get(self.conn_rooms.get(conn_id, ""))
        if room is None:
            raise RuleViolation("not in a room")
        try:
            async with room.lock:
                if room.code not in self.rooms:
                    raise RuleViolation("room closed")
                room.touch()
                if msg_type == "ready":
                    await self.lobby.toggle_ready(room, conn_id)
                elif msg_type == "submit":
                    req = SubmitRequest.model_validate(message)
                    await self.rounds.submit(room, conn_id, req.card, req.custom_text)
                elif msg_type == "pick":
                    req = PickRequest.model_validate(message)
                    await self.rounds.pick(room, conn_id, req.player_id)
                elif msg_type == "reveal-card":
                    req = RevealCardRequest.model_validate(message)
                    await self.rounds.reveal_card(room, conn_id, req.index)
                elif msg_type == "rematch":
                    await self.rounds.rematch(room, conn_id)
                else:
                    raise RuleViolation(f"unknown event {msg_type!r}")
        except PayloadError as exc:
            raise RuleViolation(first_error_message(exc)) from exc

    async def join_room(self, conn_id: str, message: dict):
        try:
            req = JoinRoomRequest.model_validate(message)
        except PayloadError as exc:
            raise ValidationError(first_error_message(exc)) from exc
        if conn_id in self.conn_rooms:
            raise ValidationError("Already in a room")

        room = self.rooms.get(req.code)
        if room is None:
            if not req.create:
                raise NotFoundError("Room not found")
            room = self.create_room(req.code)

        async with room.lock:
            if room.code not in self.rooms:
                raise NotFoundError("Room not found")
            room.touch()

            existing = self.supervisor.match_player(room, req.name, req.session_token)
            if existing:
                token = await self.supervisor.restore(room, existing, conn_id, req.session_token)
                await self._ack(conn_id, message, {
                    "ok": True, "reconnected": True, "sessionToken": token,
                    "playerId": existing.id, "roomCode": room.code, "name": existing.name,
                })
                await self.supervisor.announce_reconnect(room, existing)
                return

            if room.find_by_name(req.name):
                raise ValidationError("Name taken")

            player = Player(id=new_player_id(), name=req.name, conn_id=conn_id)
            token = req.session_token or self.sessions.new_token()
            self.sessions.bind(token, player.name, room.code, player.id, conn_id)
            self.conn_rooms[conn_id] = room.code
            result = {"ok": True, "sessionToken": token, "playerId": player.id,
                      "roomCode": room.code, "name": player.name}

            if room.started:
                room.pending[player.id] = player
                logger.info("Player '%s' waiting to join room %s next round", player.name, room.code)
                await self._ack(conn_id, message, dict(result, pending=True))
                await self.send(conn_id, room.game_snapshot(player, pending=True))
                return

            room.players[player.id] = player
            logger.info("Player '%s' joined room %s", player.name, room.code)
            await self._ack(conn_id, message, result)
            await self.broadcast_lobby(room)
            await self.lobby.evaluate(room)
