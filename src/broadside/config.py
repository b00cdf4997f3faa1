"""Central configuration for runtime-tunable parameters.

All network and logging constants can be overridden via environment variables
so that the relay server and the console client run with sane defaults, while
the automated test-suite can point them at ephemeral ports.
"""

from __future__ import annotations

import os
import string

# ===========================================================================
# Network Defaults
# ===========================================================================
# BROADSIDE_HOST: Default host address for the relay server to bind to and
#   clients to connect to.
#   Defaults to "127.0.0.1".
#   Example: export BROADSIDE_HOST=0.0.0.0
DEFAULT_HOST: str = os.getenv("BROADSIDE_HOST", "127.0.0.1")

# BROADSIDE_PORT: Default port for the relay server.
#   Defaults to 61337.
#   Example: export BROADSIDE_PORT=5001
DEFAULT_PORT: int = int(os.getenv("BROADSIDE_PORT", "61337"))


# ===========================================================================
# Idle Detection
# ===========================================================================
# BROADSIDE_IDLE_TIMEOUT: seconds a connection may stay silent before the
#   relay treats it as disconnected and tears its room down.
#   Defaults to 0, which disables idle detection entirely (a hung peer keeps
#   its room alive until its socket closes).
#   Example: export BROADSIDE_IDLE_TIMEOUT=300
IDLE_TIMEOUT: float = float(os.getenv("BROADSIDE_IDLE_TIMEOUT", "0"))


# ===========================================================================
# Rooms
# ===========================================================================
ROOM_CODE_LENGTH: int = 4
ROOM_CODE_ALPHABET: str = string.ascii_uppercase

# Fresh codes drawn before create_room gives up on a crowded registry.
ROOM_CODE_ATTEMPTS: int = 64


# ===========================================================================
# Game Constants
# ===========================================================================
BOARD_SIZE: int = 10

# Standard fleet: list of (name, length) tuples in placement order.
SHIPS = [
    ("Carrier", 5),
    ("Battleship", 4),
    ("Cruiser", 3),
    ("Submarine", 3),
    ("Destroyer", 2),
]

# Unique single-letter representations for each ship on a revealed board.
SHIP_LETTERS = {
    "Carrier": "A",  # "A" for Aircraft carrier to avoid clash with Cruiser's "C"
    "Battleship": "B",
    "Cruiser": "C",
    "Submarine": "S",
    "Destroyer": "D",
}


# ===========================================================================
# Framing
# ===========================================================================
# Largest JSON payload accepted in a single frame (bytes).
MAX_PAYLOAD: int = 64 * 1024


# ===========================================================================
# Debugging and Logging
# ===========================================================================
# BROADSIDE_DEBUG: If "1", enables detailed debug logging across modules.
#   Defaults to "0" (disabled).
DEBUG: bool = os.getenv("BROADSIDE_DEBUG", "0") == "1"


# ===========================================================================
# Cryptography Defaults
# ===========================================================================
# BROADSIDE_KEY: AES key as a hex string (16/24/32 bytes). When set, both the
#   relay server and the client seal every frame with AES-GCM.
#   Unset by default (plain CRC framing).
DEFAULT_KEY_HEX: str = "00112233445566778899AABBCCDDEEFF"
KEY_HEX: str | None = os.getenv("BROADSIDE_KEY") or None
