from fastapi import FastAPI, WebSocket, HTTPException, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from typing import List, Optional, Union
from contextlib import asynccontextmanager
import uvicorn
import logging
import socket as socketlib

import config
config.setup_logging()

from errors import GameError
from session_gateway import session_gateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting trivia duel backend")
    session_gateway.start_cleanup_loop()
    yield
    await session_gateway.stop_cleanup_loop()
    logger.info("Shutting down trivia duel backend")


app = FastAPI(title="Trivia Duel Backend", lifespan=lifespan)


@app.exception_handler(GameError)
async def game_error_handler(request: Request, exc: GameError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def get_local_ip():
    try:
        s = socketlib.socket(socketlib.AF_INET, socketlib.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except Exception:
        return "127.0.0.1"


def _require_header(user_id: Optional[str]) -> str:
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing x-user-id header")
    return user_id


class AuthRequest(BaseModel):
    username: Optional[str] = None


class RenameRequest(BaseModel):
    newUsername: str


class RoomCreateRequest(BaseModel):
    difficulty: str = "easy"
    mode: str = config.DEFAULT_MODE

    @field_validator('difficulty')
    @classmethod
    def validate_difficulty(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in config.VALID_DIFFICULTIES:
            raise ValueError(f'Difficulty must be one of: {", ".join(config.VALID_DIFFICULTIES)}')
        return v

    @field_validator('mode')
    @classmethod
    def validate_mode(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in config.VALID_MODES:
            raise ValueError(f'Mode must be one of: {", ".join(config.VALID_MODES)}')
        return v


class AnswerRequest(BaseModel):
    round: int
    answers: Union[str, List[str]]

    @field_validator('answers')
    @classmethod
    def validate_answers(cls, v):
        if isinstance(v, list) and len(v) > 50:
            raise ValueError('Too many answers')
        return v


class AdvanceRequest(BaseModel):
    round: Optional[int] = None


# --- Identity ---

@app.post("/api/auth/anonymous")
async def authenticate_anonymous(request: Optional[AuthRequest] = None,
                                 x_user_id: Optional[str] = Header(default=None),
                                 x_username: Optional[str] = Header(default=None)):
    # Body username wins over the x-username header
    username = request.username if request and request.username is not None else x_username
    user = await session_gateway.authenticate(x_user_id, username)
    return user.to_dict()


@app.post("/api/user/update-username")
async def update_username(request: RenameRequest,
                          x_user_id: Optional[str] = Header(default=None)):
    user = await session_gateway.rename_user(_require_header(x_user_id), request.newUsername)
    return user.to_dict()


@app.get("/api/user/me")
async def current_user(x_user_id: Optional[str] = Header(default=None)):
    return session_gateway.require_user(_require_header(x_user_id)).to_dict()


# --- Rooms ---

@app.post("/api/rooms/create")
async def create_room(request: RoomCreateRequest,
                      x_user_id: Optional[str] = Header(default=None)):
    snapshot = await session_gateway.create_room(_require_header(x_user_id),
                                                 request.difficulty, request.mode)
    return {"roomId": snapshot["roomId"], "room": snapshot}


@app.post("/api/rooms/join/{room_id}")
async def join_room(room_id: str, x_user_id: Optional[str] = Header(default=None)):
    snapshot = await session_gateway.join_room(_require_header(x_user_id), room_id)
    return {"roomId": snapshot["roomId"], "room": snapshot}


@app.post("/api/rooms/{room_id}/leave")
async def leave_room(room_id: str, x_user_id: Optional[str] = Header(default=None)):
    deleted = await session_gateway.leave_room(_require_header(x_user_id), room_id)
    return {"ok": True, "roomDeleted": deleted}


@app.post("/api/rooms/{room_id}/start")
async def start_game(room_id: str, x_user_id: Optional[str] = Header(default=None)):
    return {"room": await session_gateway.start_game(_require_header(x_user_id), room_id)}


@app.post("/api/rooms/{room_id}/answer")
async def submit_answer(room_id: str, request: AnswerRequest,
                        x_user_id: Optional[str] = Header(default=None)):
    return await session_gateway.submit_answer(_require_header(x_user_id), room_id,
                                               request.round, request.answers)


@app.post("/api/rooms/{room_id}/advance")
async def advance_round(room_id: str, request: Optional[AdvanceRequest] = None,
                        x_user_id: Optional[str] = Header(default=None)):
    expected = request.round if request else None
    return {"room": await session_gateway.advance_round(_require_header(x_user_id), room_id, expected)}


@app.get("/api/rooms/{room_id}")
async def get_room(room_id: str, x_user_id: Optional[str] = Header(default=None)):
    return {"room": session_gateway.get_room(_require_header(x_user_id), room_id)}


@app.websocket("/ws/{room_id}/{user_id}")
async def websocket_endpoint(websocket: WebSocket, room_id: str, user_id: str):
    await session_gateway.connect(websocket, room_id, user_id)


# Configure CORS
if config.ALLOWED_ORIGINS.strip():
    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
else:
    local_ip = get_local_ip()
    origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        f"http://{local_ip}:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "x-user-id", "x-username"],
)


@app.get("/")
async def root():
    return {"message": "Trivia Duel API is running"}


@app.get("/health")
async def health():
    return {"status": "healthy", "rooms": len(session_gateway.registry.rooms)}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
