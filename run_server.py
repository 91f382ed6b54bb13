#!/usr/bin/env python3
"""
Startup script for the peerlink signaling relay
"""

import logging
import sys
import uvicorn

from peerlink.config import HOST, PORT, RELOAD, LOG_LEVEL


def main():
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    print("Starting peerlink signaling relay...")
    print(f"Server will be available at: http://{HOST}:{PORT}")
    print(f"WebSocket endpoint: ws://{HOST}:{PORT}/api/v1/ws")
    print(f"API Documentation: http://{HOST}:{PORT}/docs")
    print("Press Ctrl+C to stop the server")
    print("-" * 50)

    try:
        uvicorn.run(
            "peerlink.main:app",
            host=HOST,
            port=PORT,
            reload=RELOAD,
            log_level=LOG_LEVEL,
            access_log=True
        )
    except KeyboardInterrupt:
        print("\nServer stopped by user")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
