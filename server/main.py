"""FastAPI WebSocket server for the Mau card game."""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import config
from handlers import HANDLERS, ConnectionContext, handle_departure
from logging_config import connection_id_var, room_code_var, setup_logging
from room import RoomManager

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)

room_manager = RoomManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    from routers.health import set_health_dependencies
    set_health_dependencies(room_manager=room_manager)

    logger.info(f"Mau server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    await _close_all_websockets()
    room_manager.rooms.clear()
    logger.info("Shutdown complete")


async def _close_all_websockets():
    """Close all active WebSocket connections gracefully."""
    for room in list(room_manager.rooms.values()):
        for player in room.players.values():
            if player.outbox and player.outbox.websocket:
                try:
                    await player.outbox.websocket.close(code=1001, reason="Server shutting down")
                except Exception as e:
                    logger.debug(f"Close failed for {player.id}: {e}")
    logger.info("All WebSocket connections closed")


app = FastAPI(
    title="Mau Card Game",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)

from routers.health import router as health_router
app.include_router(health_router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    # The connection ID doubles as the player's opaque identity
    player_id = str(uuid.uuid4())
    connection_id_var.set(player_id)
    logger.debug(f"WebSocket connected as {player_id}")

    ctx = ConnectionContext(websocket=websocket, player_id=player_id)

    # Shared dependencies passed to every handler
    handler_deps = dict(room_manager=room_manager)

    await websocket.send_json({"type": "connected", "player_id": player_id})

    try:
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                continue
            handler = HANDLERS.get(data.get("type"))
            if handler:
                room_code_var.set(ctx.current_room.code if ctx.current_room else data.get("room_code"))
                await handler(data, ctx, **handler_deps)
    except WebSocketDisconnect:
        logger.debug(f"WebSocket {player_id} disconnected")
    finally:
        await handle_departure(player_id, room_manager)
        await ctx.outbox.close()


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Mau server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
