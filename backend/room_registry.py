from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional
import asyncio
import logging
import random
import re
import time

import config
from errors import (
    InvalidRoomCode, InvalidState, NotInRoom, RoomFull, RoomLimitReached, RoomNotFound,
)
from identity import User
from question_bank import Question, QuestionBank, question_bank

logger = logging.getLogger(__name__)

STATUS_WAITING = "waiting"
STATUS_PLAYING = "playing"
STATUS_FINISHED = "finished"

_CODE_RE = re.compile(r'^[A-Z0-9]{%d}$' % config.ROOM_CODE_LENGTH)


@dataclass
class PlayerState:
    id: str
    username: str
    score: int = 0
    has_answered: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "score": self.score,
            "hasAnsweredCurrentRound": self.has_answered,
        }


class Room:
    def __init__(self, room_code: str, host: User, difficulty: str, mode: str,
                 questions: List[Question]):
        self.room_code = room_code
        self.host_id = host.user_id
        self.players: List[PlayerState] = [PlayerState(host.user_id, host.username)]
        self.status = STATUS_WAITING
        self.difficulty = difficulty
        self.mode = mode
        self.questions = questions
        self.max_rounds = len(questions)
        self.current_round = 0
        self.round_start_time: float = 0
        self.round_duration = config.ROUND_SECONDS[mode]
        self.answers_received: Dict[str, object] = {}  # user_id -> normalized answer
        self.version = 0  # bumped on every mutation; snapshots never go backwards
        self.lock = asyncio.Lock()
        self.created_at = time.time()
        self.last_activity = self.created_at
        self.finished_at: Optional[float] = None
        self.deleted = False

    def touch(self):
        """Update last activity timestamp."""
        self.last_activity = time.time()

    def bump(self):
        """Record a mutation: new version, fresh activity."""
        self.version += 1
        self.touch()

    def is_expired(self) -> bool:
        now = time.time()
        if self.status == STATUS_FINISHED and self.finished_at is not None:
            return now - max(self.finished_at, self.last_activity) > config.FINISHED_ROOM_GRACE_SECONDS
        return now - self.last_activity > config.ROOM_TTL_SECONDS

    def get_player(self, user_id: str) -> Optional[PlayerState]:
        return next((p for p in self.players if p.id == user_id), None)

    def require_player(self, user_id: str) -> PlayerState:
        player = self.get_player(user_id)
        if player is None:
            raise NotInRoom()
        return player

    @property
    def current_question(self) -> Optional[Question]:
        if self.status == STATUS_PLAYING and 0 <= self.current_round < self.max_rounds:
            return self.questions[self.current_round]
        return None

    def time_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now - self.round_start_time >= self.round_duration

    def round_closed(self, now: Optional[float] = None) -> bool:
        """A round closes once every player answered or its time ran out."""
        if self.status != STATUS_PLAYING:
            return False
        if self.players and all(p.has_answered for p in self.players):
            return True
        return self.time_expired(now)


def normalize_code(raw: str) -> str:
    """Room codes are case-insensitive on input and stored uppercase."""
    code = raw.strip().upper() if isinstance(raw, str) else ""
    if not _CODE_RE.match(code):
        raise InvalidRoomCode()
    return code


class RoomRegistry:
    def __init__(self, bank: Optional[QuestionBank] = None, rng: Optional[random.Random] = None):
        self.rooms: Dict[str, Room] = {}
        self.bank = bank or question_bank
        self.rng = rng or random.Random()

    def generate_room_code(self) -> str:
        """Generate a unique room code, checking for collisions."""
        for _ in range(config.MAX_ROOM_CODE_ATTEMPTS):
            code = ''.join(self.rng.choices(config.ROOM_CODE_ALPHABET, k=config.ROOM_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise RuntimeError("Failed to generate unique room code")

    def create_room(self, host: User, difficulty: str, mode: str = config.DEFAULT_MODE) -> Room:
        if len(self.rooms) >= config.MAX_ROOMS:
            raise RoomLimitReached()
        questions = self.bank.draw(difficulty, config.MAX_ROUNDS, mode)
        code = self.generate_room_code()
        room = Room(code, host, difficulty, mode, questions)
        self.rooms[code] = room
        logger.info("Room created: %s (host=%s, difficulty=%s, mode=%s)",
                    code, host.user_id, difficulty, mode)
        return room

    def get_room(self, room_code: str) -> Room:
        room = self.rooms.get(normalize_code(room_code))
        if room is None or room.deleted:
            raise RoomNotFound()
        return room

    @asynccontextmanager
    async def locked(self, room_code: str) -> AsyncIterator[Room]:
        """Hold the room's lock; a room deleted while we waited is not found."""
        room = self.get_room(room_code)
        async with room.lock:
            if room.deleted:
                raise RoomNotFound()
            yield room

    def delete_room(self, room: Room):
        """Caller must hold the room lock."""
        room.deleted = True
        if self.rooms.get(room.room_code) is room:
            del self.rooms[room.room_code]
        logger.info("Room %s deleted", room.room_code)

    def rooms_for_user(self, user_id: str) -> List[Room]:
        return [r for r in self.rooms.values() if r.get_player(user_id)]

    def all_rooms(self) -> List[Room]:
        return list(self.rooms.values())

    def active_user_ids(self) -> set:
        return {p.id for r in self.rooms.values() for p in r.players}

    async def join_room(self, room_code: str, user: User) -> Room:
        async with self.locked(room_code) as room:
            if room.get_player(user.user_id):
                return room
            if len(room.players) >= config.MAX_PLAYERS_PER_ROOM:
                raise RoomFull()
            if room.status != STATUS_WAITING:
                raise InvalidState("Game already started")
            room.players.append(PlayerState(user.user_id, user.username))
            room.bump()
            logger.info("Player '%s' joined room %s", user.username, room.room_code)
            return room

    async def leave_room(self, room_code: str, user_id: str) -> bool:
        """Remove a player; returns True when the room was deleted as a result."""
        async with self.locked(room_code) as room:
            player = room.require_player(user_id)
            room.players.remove(player)
            # Leaver no longer counts toward round close
            room.answers_received.pop(user_id, None)
            logger.info("Player '%s' left room %s", player.username, room.room_code)
            if not room.players:
                self.delete_room(room)
                return True
            if room.host_id == user_id:
                room.host_id = room.players[0].id
                logger.info("Host of room %s passed to %s", room.room_code, room.host_id)
            room.bump()
            return False


room_registry = RoomRegistry()
