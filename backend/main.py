"""Blank Slate party card game: backend server"""

from fastapi import FastAPI, WebSocket, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from collections import defaultdict
from typing import Dict
import uvicorn
import logging
import time
import socket as socketlib

import config
config.setup_logging()

from deck import CardPool
from errors import CapacityError
from game_server import GameServer

logger = logging.getLogger(__name__)

game_server = GameServer(CardPool.load())


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Blank Slate backend")
    game_server.start_cleanup_loop()
    yield
    game_server.stop_cleanup_loop()
    logger.info("Shutting down Blank Slate backend")


app = FastAPI(title="Blank Slate API", lifespan=lifespan)


def get_local_ip():
    try:
        s = socketlib.socket(socketlib.AF_INET, socketlib.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except Exception:
        return "127.0.0.1"


@app.get("/system/info")
async def get_system_info():
    return {"ip": get_local_ip()}


# Rate limiter
_rate_limit_store: Dict[str, list] = defaultdict(list)


def _check_rate_limit(client_ip: str) -> bool:
    now = time.time()
    window = config.RATE_LIMIT_WINDOW
    _rate_limit_store[client_ip] = [
        t for t in _rate_limit_store[client_ip] if now - t < window
    ]
    if len(_rate_limit_store[client_ip]) >= config.RATE_LIMIT_MAX_REQUESTS:
        return False
    _rate_limit_store[client_ip].append(now)
    return True


# --- Endpoints ---

@app.post("/room/create")
async def create_room(req: Request):
    client_ip = req.client.host if req.client else "unknown"
    if not _check_rate_limit(client_ip):
        raise HTTPException(status_code=429, detail="Too many requests. Please wait.")
    try:
        room = game_server.create_room()
    except CapacityError as exc:
        raise HTTPException(status_code=429, detail=str(exc))
    return {"code": room.code}


@app.get("/room/{code}")
async def get_room(code: str):
    room = game_server.rooms.get(code.upper())
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return {
        "code": room.code,
        "started": room.started,
        "playerCount": len(room.players),
        "pendingCount": len(room.pending),
        "waitingFor": room.waiting_for(),
    }


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await game_server.connect(websocket)


# --- CORS ---

if config.ALLOWED_ORIGINS.strip():
    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
else:
    local_ip = get_local_ip()
    origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        f"http://{local_ip}:3000",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


@app.get("/")
async def root():
    return {"message": "Blank Slate API is running"}


@app.get("/health")
async def health():
    return {"status": "ok", "rooms": len(game_server.rooms)}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
