import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from peerlink.routes.signaling.web_socket import websocket_router
from peerlink.config import CORS_ORIGINS, HOST, PORT, RELOAD, LOG_LEVEL

# Create FastAPI app instance
app = FastAPI(
    title="peerlink signaling relay",
    description="WebSocket relay for room chat and WebRTC offer/answer/candidate exchange",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add CORS middleware for WebSocket connections
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(websocket_router, prefix="/api/v1", tags=["websocket"])

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "peerlink signaling relay",
        "version": "1.0.0",
        "status": "running",
        "websocket": "/api/v1/ws",
        "docs": "/docs"
    }

if __name__ == "__main__":
    uvicorn.run(
        "peerlink.main:app",
        host=HOST,
        port=PORT,
        reload=RELOAD,
        log_level=LOG_LEVEL,
        access_log=True
    )
