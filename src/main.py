from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from redis.asyncio import Redis

from src.change_feed import RedisChangeFeed
from src.db import Session, engine
from src.exceptions import DecisionRoomError
from src.load_secrets import expiration_sweep_seconds, redis_host, redis_port
from src.models.schemas import Base
from src.routers import room
from src.services.engine import DecisionRoomEngine

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app):
    """Create the tables and start the room engine.
    This function is called to start the server.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    redis = Redis(host=redis_host, port=redis_port, decode_responses=True, health_check_interval=30)
    scheduler = AsyncIOScheduler()
    app.state.engine = DecisionRoomEngine(Session, RedisChangeFeed(redis), scheduler)

    # Rooms whose deadline passed while the server was down are closed by the sweep
    app.state.engine.expiration_clock.start(expiration_sweep_seconds)
    scheduler.start()
    try:
        yield
    finally:
        scheduler.shutdown()
        await redis.aclose()
        logging.info("Stop Server")


async def decision_room_error_handler(request: Request, exc: DecisionRoomError) -> JSONResponse:
    logging.info(f"{request.method} {request.url.path}: {type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


app = FastAPI(lifespan=lifespan)
app.add_exception_handler(DecisionRoomError, decision_room_error_handler)
app.include_router(room.room_router)


# if __name__ == "__main__":
#     uvicorn.run(app, host="0.0.0.0", port=8080, reload=True)
