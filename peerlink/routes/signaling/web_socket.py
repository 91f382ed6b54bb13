import json
import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from .relay import Relay, RelayError

logger = logging.getLogger(__name__)

websocket_router = APIRouter()

# Global relay instance shared by every websocket connection
relay = Relay()


@websocket_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for room chat and WebRTC signaling"""
    await websocket.accept()

    async def send(message: dict):
        await websocket.send_text(json.dumps(message))

    connection = await relay.connect(send)
    connection_id = connection.connection_id
    logger.info(f"WebSocket connection established for: {connection_id}")

    try:
        await send({
            "type": "connection_established",
            "userId": connection_id,
            "status": "connected"
        })

        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.error(f"Invalid JSON received from {connection_id}")
                await send({
                    "type": "error",
                    "message": "Invalid JSON format"
                })
                continue

            try:
                await relay.handle_message(connection_id, message)
            except RelayError as e:
                logger.warning(f"Rejected message from {connection_id}: {e}")
                await send({
                    "type": "error",
                    "message": str(e)
                })
            except Exception as e:
                logger.error(f"Error processing message from {connection_id}: {e}")
                await send({
                    "type": "error",
                    "message": f"Error processing message: {str(e)}"
                })

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for: {connection_id}")
    finally:
        await relay.disconnect(connection_id)


@websocket_router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "active_connections": len(relay.connections),
        "active_rooms": len(relay.rooms.rooms)
    }


@websocket_router.get("/connections")
async def get_connections():
    """Get current active connections and the rooms they joined"""
    return {
        "active_connections": {
            connection_id: sorted(relay.rooms.get_peer_rooms(connection_id))
            for connection_id in relay.connections
        },
        "total_connections": len(relay.connections)
    }
