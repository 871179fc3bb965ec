"""
Relay Receiver — FastAPI application entry point.

Owns the Transfer Manager for the lifetime of the app, serves the REST API
the frontend polls and the WebSocket endpoint it listens on for events.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from api.routes import init_routes, router
from api.websocket import ConnectionManager
from config import API_HOST, API_PORT, RELAY_URL
from transfer.manager import TransferManager

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Service singletons ---
transfer_manager = TransferManager()
ws_manager = ConnectionManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire events on startup, tear the relay connection down on shutdown."""
    logger.info("Starting Relay Receiver...")

    try:
        transfer_manager.on_event(ws_manager.handle_event)
        logger.info(
            f"Relay Receiver ready — API: {API_HOST}:{API_PORT}, relay: {RELAY_URL}"
        )

        yield

    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down Relay Receiver...")
        await transfer_manager.close()


# --- FastAPI app ---
app = FastAPI(
    title="Relay Receiver",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000", "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Inject services into routes
init_routes(transfer_manager)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await ws_manager.connect(
        websocket, snapshot=transfer_manager.get_status().model_dump(mode="json")
    )
    try:
        while True:
            # Keep the connection alive; we don't expect client messages
            await websocket.receive_text()
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception:
        await ws_manager.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )
