from fastapi import WebSocket, WebSocketDisconnect
from typing import Dict, List, Optional
import json
import time
import asyncio
import logging

import config
from errors import GameError, RoomNotFound
from identity import IdentityRegistry, User, identity_registry
from room_registry import Room, RoomRegistry, room_registry
from round_engine import RoundEngine, round_engine

logger = logging.getLogger(__name__)


class Subscriber:
    """One WebSocket watching one room.

    Snapshots are delivered in version order: anything not newer than the
    last one sent is dropped, so a slow broadcast can never overwrite a
    newer state on the client.
    """

    def __init__(self, websocket: WebSocket, user_id: str):
        self.websocket = websocket
        self.user_id = user_id
        self.last_version = -1
        self._lock = asyncio.Lock()

    async def send_snapshot(self, snapshot: dict):
        async with self._lock:
            if snapshot["version"] <= self.last_version:
                return
            self.last_version = snapshot["version"]
            await self.websocket.send_json({"type": "ROOM_UPDATE", "room": snapshot})

    async def send(self, message: dict):
        async with self._lock:
            await self.websocket.send_json(message)


class SessionGateway:
    def __init__(self, identity: Optional[IdentityRegistry] = None,
                 registry: Optional[RoomRegistry] = None,
                 engine: Optional[RoundEngine] = None):
        self.identity = identity or identity_registry
        self.registry = registry or room_registry
        self.engine = engine or round_engine
        self.subscribers: Dict[str, Dict[str, Subscriber]] = {}  # room_code -> user_id -> sub
        self.msg_timestamps: Dict[str, list] = {}  # user_id -> recent message times
        self._cleanup_task: Optional[asyncio.Task] = None
        self.allowed_origins: List[str] = []

    # --- Background sweep ---

    def start_cleanup_loop(self):
        """Start the background sweep task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._sweep_loop())

    async def stop_cleanup_loop(self):
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    async def _sweep_loop(self):
        while True:
            try:
                await asyncio.sleep(config.SWEEP_INTERVAL_SECONDS)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in room sweep loop")

    async def sweep(self):
        """Advance stalled rounds, reap idle rooms, evict idle users."""
        for room in self.registry.all_rooms():
            try:
                if not room.players or room.is_expired():
                    await self._reap(room)
                elif await self.engine.auto_advance_expired(room.room_code):
                    await self.broadcast_room(room)
            except RoomNotFound:
                continue
        self.identity.evict_idle(self.registry.active_user_ids())

    async def _reap(self, room: Room):
        async with self.registry.locked(room.room_code) as locked_room:
            if locked_room.players and not locked_room.is_expired():
                return
            self.registry.delete_room(locked_room)
        logger.info("Cleaned up expired room %s", room.room_code)
        await self.broadcast_deleted(room.room_code, "Room closed due to inactivity")

    # --- Broadcasting ---

    async def broadcast_room(self, room: Room) -> dict:
        snapshot = self.engine.snapshot(room)
        await self._broadcast_snapshot(room.room_code, snapshot)
        return snapshot

    async def _broadcast_snapshot(self, room_code: str, snapshot: dict):
        subs = list(self.subscribers.get(room_code, {}).items())
        for user_id, sub in subs:
            try:
                await sub.send_snapshot(snapshot)
            except Exception:
                self._unsubscribe(room_code, user_id, sub)

    async def broadcast_deleted(self, room_code: str, reason: str):
        subs = self.subscribers.pop(room_code, {})
        for sub in subs.values():
            try:
                await sub.send({"type": "ROOM_DELETED", "roomId": room_code, "message": reason})
            except Exception:
                pass

    def _unsubscribe(self, room_code: str, user_id: str, sub: Optional[Subscriber] = None):
        subs = self.subscribers.get(room_code)
        if not subs:
            return
        if sub is None or subs.get(user_id) is sub:
            subs.pop(user_id, None)
        if not subs:
            self.subscribers.pop(room_code, None)

    # --- Request-style operations ---

    async def authenticate(self, existing_user_id: Optional[str] = None,
                           username: Optional[str] = None) -> User:
        """Sign in anonymously; a known user supplying a new name is renamed everywhere."""
        user = self.identity.authenticate_anonymous(existing_user_id, username)
        if username is not None:
            await self._propagate_username(user)
        return user

    def require_user(self, user_id: Optional[str]) -> User:
        return self.identity.get_user(user_id)

    async def rename_user(self, user_id: str, new_username: str) -> User:
        user = self.identity.rename_user(user_id, new_username)
        await self._propagate_username(user)
        return user

    async def _propagate_username(self, user: User):
        for room in self.registry.rooms_for_user(user.user_id):
            try:
                async with self.registry.locked(room.room_code) as locked_room:
                    player = locked_room.get_player(user.user_id)
                    if player is None or player.username == user.username:
                        continue
                    player.username = user.username
                    locked_room.bump()
            except RoomNotFound:
                continue
            await self.broadcast_room(room)

    async def create_room(self, user_id: str, difficulty: str,
                          mode: str = config.DEFAULT_MODE) -> dict:
        user = self.require_user(user_id)
        room = self.registry.create_room(user, difficulty, mode)
        return self.engine.snapshot(room)

    async def join_room(self, user_id: str, room_code: str) -> dict:
        user = self.require_user(user_id)
        room = await self.registry.join_room(room_code, user)
        return await self.broadcast_room(room)

    async def leave_room(self, user_id: str, room_code: str) -> bool:
        self.require_user(user_id)
        room = self.registry.get_room(room_code)
        deleted = await self.registry.leave_room(room.room_code, user_id)
        self._unsubscribe(room.room_code, user_id)
        if deleted:
            await self.broadcast_deleted(room.room_code, "All players left the room")
        else:
            await self.broadcast_room(room)
        return deleted

    async def start_game(self, user_id: str, room_code: str) -> dict:
        self.require_user(user_id)
        room = await self.engine.start_game(room_code, user_id)
        return await self.broadcast_room(room)

    async def submit_answer(self, user_id: str, room_code: str, round_index: int,
                            answer) -> dict:
        """Soft rejections (late or duplicate answers) come back as accepted=False."""
        self.require_user(user_id)
        try:
            delta = await self.engine.submit_answer(room_code, user_id, round_index, answer)
        except GameError as e:
            if not e.soft:
                raise
            logger.debug("Answer from %s in room %s ignored: %s", user_id, room_code, e.message)
            return {
                "accepted": False,
                "scoreEarned": 0,
                "reason": e.message,
                "code": e.code,
                "room": self.engine.snapshot(self.registry.get_room(room_code)),
            }
        room = self.registry.get_room(room_code)
        snapshot = await self.broadcast_room(room)
        return {"accepted": True, "scoreEarned": delta, "room": snapshot}

    async def advance_round(self, user_id: str, room_code: str,
                            expected_round: Optional[int] = None) -> dict:
        self.require_user(user_id)
        room = await self.engine.advance_round(room_code, user_id, expected_round)
        return await self.broadcast_room(room)

    def get_room(self, user_id: str, room_code: str) -> dict:
        self.require_user(user_id)
        return self.engine.snapshot(self.registry.get_room(room_code))

    # --- WebSocket subscription ---

    async def connect(self, websocket: WebSocket, room_code: str, user_id: str):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        try:
            self.require_user(user_id)
            room = self.registry.get_room(room_code)
            room.require_player(user_id)
        except GameError as e:
            await websocket.send_json({"type": "ERROR", **e.to_dict()})
            await websocket.close()
            return

        room_code = room.room_code
        sub = Subscriber(websocket, user_id)
        self.subscribers.setdefault(room_code, {})[user_id] = sub
        await sub.send_snapshot(self.engine.snapshot(room))

        try:
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    await sub.send({"type": "ERROR", "message": "Message too large"})
                    continue

                # Per-client rate limiting
                now = time.time()
                timestamps = self.msg_timestamps.setdefault(user_id, [])
                timestamps[:] = [t for t in timestamps if now - t < 1.0]
                if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
                    await sub.send({"type": "ERROR", "message": "Too many messages"})
                    continue
                timestamps.append(now)

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from user %s: %s", user_id, data[:100])
                    await sub.send({"type": "ERROR", "message": "Invalid message format"})
                    continue
                if not isinstance(message, dict):
                    await sub.send({"type": "ERROR", "message": "Invalid message format"})
                    continue

                try:
                    await self.handle_message(room_code, user_id, message, sub)
                except GameError as e:
                    await sub.send({"type": "ERROR", **e.to_dict()})
        except WebSocketDisconnect:
            logger.info("User %s disconnected from room %s", user_id, room_code)
        except Exception:
            logger.exception("WebSocket error for user %s in room %s", user_id, room_code)
        finally:
            self._unsubscribe(room_code, user_id, sub)
            self.msg_timestamps.pop(user_id, None)

    async def handle_message(self, room_code: str, user_id: str, message: dict, sub: Subscriber):
        msg_type = message.get("type")

        if msg_type == "START_GAME":
            await self.start_game(user_id, room_code)

        elif msg_type == "SUBMIT_ANSWER":
            round_index = message.get("round")
            if not isinstance(round_index, int):
                await sub.send({"type": "ERROR", "message": "Missing round number"})
                return
            result = await self.submit_answer(user_id, room_code, round_index, message.get("answers"))
            ack = {
                "type": "ANSWER_ACK",
                "roomId": room_code,
                "round": round_index,
                "accepted": result["accepted"],
                "scoreEarned": result["scoreEarned"],
            }
            if not result["accepted"]:
                ack["reason"] = result["reason"]
            await sub.send(ack)

        elif msg_type == "NEXT_ROUND":
            expected = message.get("round")
            await self.advance_round(user_id, room_code, expected if isinstance(expected, int) else None)

        elif msg_type == "LEAVE_ROOM":
            deleted = await self.leave_room(user_id, room_code)
            await sub.send({"type": "LEFT_ROOM", "roomId": room_code, "roomDeleted": deleted})

        elif msg_type == "PING":
            await sub.send({"type": "PONG"})

        else:
            await sub.send({"type": "ERROR", "message": f"Unknown message type: {msg_type}"})


session_gateway = SessionGateway()
