"""
Runtime configuration.
Values come from environment variables, optionally loaded from a .env file.
"""

import os
from dotenv import load_dotenv

load_dotenv()

VERSION = "0.1.0"

DEFAULT_USER_AGENT = (
    f"notehook/{VERSION} "
    "(+https://github.com/niri-la/misskey-discord-webhook-proxy)"
)

# Identifying header sent with every outbound Discord request
USER_AGENT: str = os.getenv("USER_AGENT") or DEFAULT_USER_AGENT

DEDUP_CAPACITY = int(os.getenv("DEDUP_CAPACITY", "1024"))

DISCORD_API_BASE = os.getenv("DISCORD_API_BASE", "https://discord.com/api").rstrip("/")

OUTBOUND_TIMEOUT_SECONDS = float(os.getenv("OUTBOUND_TIMEOUT_SECONDS", "10"))

# Misskey webhook payloads are small; anything bigger is refused before parsing
MAX_BODY_BYTES = int(os.getenv("MAX_BODY_BYTES", "4096"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

if DEDUP_CAPACITY < 1:
    raise ValueError("DEDUP_CAPACITY must be a positive integer")
