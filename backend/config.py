"""Application-wide configuration constants."""

import os
from pathlib import Path

# --- Local API (consumed by the frontend) ---
API_HOST = os.environ.get("RECEIVER_API_HOST", "127.0.0.1")
API_PORT = int(os.environ.get("RECEIVER_API_PORT", "8765"))

# --- Relay ---
RELAY_HOST = os.environ.get("RELAY_HOST", "localhost")
RELAY_PORT = int(os.environ.get("RELAY_PORT", "8000"))
RELAY_PATH = "/ws"
RELAY_URL = f"ws://{RELAY_HOST}:{RELAY_PORT}{RELAY_PATH}"

# --- Reconnection ---
MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY = 3.0  # seconds

# --- Transfer ---
SETTLE_DELAY = 0.5  # seconds between file_end and the completion check
COMPLETION_THRESHOLD = 0.95  # fraction of the expected size that must arrive

# --- Storage ---
DEFAULT_SAVE_DIR = os.environ.get(
    "RECEIVER_SAVE_DIR",
    str(Path.home() / "Downloads" / "RelayReceiver"),
)
