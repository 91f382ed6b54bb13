import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DEFAULT_ICE_SERVERS = "stun:stun.l.google.com:19302,stun:global.stun.twilio.com:3478"

HOST = os.getenv("PEERLINK_HOST", "0.0.0.0")
PORT = int(os.getenv("PEERLINK_PORT", "8000"))
RELOAD = os.getenv("PEERLINK_RELOAD", "false").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("PEERLINK_LOG_LEVEL", "info")

CORS_ORIGINS = [o.strip() for o in os.getenv("PEERLINK_CORS_ORIGINS", "*").split(",") if o.strip()]

# STUN/TURN urls handed to every RTCPeerConnection
ICE_SERVERS = [u.strip() for u in os.getenv("PEERLINK_ICE_SERVERS", DEFAULT_ICE_SERVERS).split(",") if u.strip()]

SERVER_URL = os.getenv("PEERLINK_SERVER_URL", f"ws://localhost:{PORT}/api/v1/ws")
