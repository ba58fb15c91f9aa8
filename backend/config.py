"""Centralized configuration: all env vars in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 4096  # bytes

# --- Storage Limits ---
MAX_ROOMS = int(os.getenv("MAX_ROOMS", "500"))

# --- Identity ---
MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 20
USER_TTL_SECONDS = int(os.getenv("USER_TTL_SECONDS", "86400"))

# --- Rooms ---
ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no I, O, 0, 1
MAX_ROOM_CODE_ATTEMPTS = 10
MAX_PLAYERS_PER_ROOM = 2
ROOM_TTL_SECONDS = int(os.getenv("ROOM_TTL_SECONDS", "1800"))
FINISHED_ROOM_GRACE_SECONDS = int(os.getenv("FINISHED_ROOM_GRACE_SECONDS", "300"))

# --- Game ---
MAX_ROUNDS = int(os.getenv("MAX_ROUNDS", "8"))
VALID_DIFFICULTIES = ("easy", "medium", "hard")
MODE_FREE_RESPONSE = "free_response"
MODE_MULTIPLE_CHOICE = "multiple_choice"
VALID_MODES = (MODE_FREE_RESPONSE, MODE_MULTIPLE_CHOICE)
DEFAULT_MODE = os.getenv("DEFAULT_MODE", MODE_FREE_RESPONSE)
MAX_FREE_RESPONSE_ANSWERS = 8
FREE_RESPONSE_ROUND_SECONDS = int(os.getenv("FREE_RESPONSE_ROUND_SECONDS", "15"))
MULTIPLE_CHOICE_ROUND_SECONDS = int(os.getenv("MULTIPLE_CHOICE_ROUND_SECONDS", "60"))
ROUND_SECONDS = {
    MODE_FREE_RESPONSE: FREE_RESPONSE_ROUND_SECONDS,
    MODE_MULTIPLE_CHOICE: MULTIPLE_CHOICE_ROUND_SECONDS,
}
QUESTION_BANK_FILE = os.getenv("QUESTION_BANK_FILE", "")

# --- Background sweep ---
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "5"))
# Seconds after a round times out before the sweep advances it; negative disables
AUTO_ADVANCE_GRACE_SECONDS = int(os.getenv("AUTO_ADVANCE_GRACE_SECONDS", "30"))

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
