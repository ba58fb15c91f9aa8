"""Round progression and scoring for a room.

State machine per room: waiting -> playing -> finished. Every transition runs
under the room's lock (see ``RoomRegistry.locked``). Each operation validates
fully before mutating, so a rejected call leaves the room untouched.

Round close is never stored: it is recomputed from ``round_start_time`` and
the players' answered flags whenever a snapshot is built.
"""
from typing import List, Optional
import logging
import time

import config
from errors import (
    AlreadyAnswered, InsufficientPlayers, InvalidState, NotHost, StaleRound,
)
from room_registry import (
    Room, RoomRegistry, STATUS_FINISHED, STATUS_PLAYING, STATUS_WAITING, room_registry,
)
from scoring import Answer, score_answer, validate_answer

logger = logging.getLogger(__name__)


def standings(room: Room) -> List[dict]:
    sorted_players = sorted(room.players, key=lambda p: p.score, reverse=True)
    return [{"id": p.id, "username": p.username, "score": p.score} for p in sorted_players]


def winner_id(room: Room) -> Optional[str]:
    """The single top scorer, or None on a tie (or an empty room)."""
    ranked = standings(room)
    if not ranked:
        return None
    if len(ranked) > 1 and ranked[1]["score"] == ranked[0]["score"]:
        return None
    return ranked[0]["id"]


class RoundEngine:
    def __init__(self, registry: Optional[RoomRegistry] = None):
        self.registry = registry or room_registry

    async def start_game(self, room_code: str, user_id: str) -> Room:
        async with self.registry.locked(room_code) as room:
            if room.host_id != user_id:
                raise NotHost()
            if room.status != STATUS_WAITING:
                raise InvalidState("Game already started")
            if len(room.players) < 2:
                raise InsufficientPlayers()
            for player in room.players:
                player.score = 0
            room.current_round = 0
            room.status = STATUS_PLAYING
            self._begin_round(room)
            logger.info("Game started in room %s (%d rounds, %s)",
                        room.room_code, room.max_rounds, room.mode)
            return room

    async def submit_answer(self, room_code: str, user_id: str, round_index: int,
                            answer: Answer) -> int:
        """Admit one answer per player per round; returns the points earned."""
        async with self.registry.locked(room_code) as room:
            if room.status == STATUS_FINISHED:
                raise StaleRound("Game is over")
            if room.status != STATUS_PLAYING:
                raise InvalidState("Game has not started")
            player = room.require_player(user_id)
            if round_index != room.current_round:
                raise StaleRound()
            if player.has_answered or user_id in room.answers_received:
                raise AlreadyAnswered()
            if room.time_expired():
                raise StaleRound("Time is up for this round")

            question = room.questions[room.current_round]
            normalized = validate_answer(question, answer)
            delta = score_answer(question, normalized)

            room.answers_received[user_id] = normalized
            player.has_answered = True
            player.score += delta
            room.bump()
            logger.info("Room %s round %d: %s scored %d", room.room_code,
                        room.current_round, user_id, delta)
            return delta

    async def advance_round(self, room_code: str, user_id: str,
                            expected_round: Optional[int] = None) -> Room:
        """Host-only; the host may force-advance a round that is still open."""
        async with self.registry.locked(room_code) as room:
            if room.host_id != user_id:
                raise NotHost()
            if room.status != STATUS_PLAYING:
                raise InvalidState("Game is not in progress")
            if expected_round is not None and expected_round != room.current_round:
                raise StaleRound("Round already advanced")
            self._advance(room)
            return room

    async def auto_advance_expired(self, room_code: str) -> bool:
        """Advance a round left open past its grace period. Used by the sweep."""
        if config.AUTO_ADVANCE_GRACE_SECONDS < 0:
            return False
        async with self.registry.locked(room_code) as room:
            if room.status != STATUS_PLAYING:
                return False
            overdue = time.time() - room.round_start_time - room.round_duration
            if overdue < config.AUTO_ADVANCE_GRACE_SECONDS:
                return False
            logger.info("Room %s round %d auto-advanced after timeout", room.room_code, room.current_round)
            self._advance(room)
            return True

    def _begin_round(self, room: Room):
        room.answers_received = {}
        for player in room.players:
            player.has_answered = False
        room.round_start_time = time.time()
        room.bump()

    def _advance(self, room: Room):
        room.current_round += 1
        if room.current_round >= room.max_rounds:
            room.status = STATUS_FINISHED
            room.finished_at = time.time()
            room.bump()
            logger.info("Game finished in room %s, winner: %s", room.room_code, winner_id(room) or "tie")
            return
        self._begin_round(room)
        logger.info("Room %s advanced to round %d", room.room_code, room.current_round)

    def snapshot(self, room: Room) -> dict:
        """Serializable view of a room, safe to send to either player."""
        question = room.current_question
        snap = {
            "roomId": room.room_code,
            "hostId": room.host_id,
            "status": room.status,
            "difficulty": room.difficulty,
            "mode": room.mode,
            "players": [p.to_dict() for p in room.players],
            "currentRound": room.current_round,
            "maxRounds": room.max_rounds,
            "roundStartTime": int(room.round_start_time * 1000),
            "roundDuration": room.round_duration,
            "roundClosed": room.round_closed(),
            "currentQuestion": question.public_view() if question else None,
            "version": room.version,
        }
        if room.status == STATUS_FINISHED:
            snap["standings"] = standings(room)
            snap["winnerId"] = winner_id(room)
            snap["isTie"] = len(room.players) > 1 and snap["winnerId"] is None
        return snap


round_engine = RoundEngine()
