from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager
from redis.asyncio import Redis

from cell_server.db import create_engine, create_session_factory, create_tables
from cell_server.load_secrets import (
    log_level,
    min_stake,
    owner_address,
    payout_retry_minutes,
    redis_host,
    redis_port,
)
from cell_server.routers import cell
from cell_server.services.cell_engine import CellEngine
from cell_server.services.notifier import RedisNotifier
from cell_server.services.payments import LedgerPaymentGateway

scheduler = AsyncIOScheduler()
logging.basicConfig(level=log_level)


@asynccontextmanager
async def lifespan(app):
    """Create tables, configure the engine and start the payout retry job.
    This function is called to start the server.
    """
    engine = create_engine()
    await create_tables(engine)
    Session = create_session_factory(engine)
    redis = Redis(host=redis_host, port=redis_port, decode_responses=True, health_check_interval=30)

    cell_engine = CellEngine(
        Session,
        payments=LedgerPaymentGateway(Session),
        notifier=RedisNotifier(redis),
    )
    await cell_engine.initialize(min_stake, owner_address)
    app.state.cell_engine = cell_engine
    app.state.redis = redis

    # Failed settlement payments are queued; retry them periodically
    scheduler.add_job(
        cell_engine.retry_pending_payouts,
        "interval",
        minutes=payout_retry_minutes,
    )
    scheduler.start()
    try:
        yield
    finally:
        scheduler.shutdown()
        await redis.aclose()
        await engine.dispose()
        logging.info("Stop Server")


app = FastAPI(lifespan=lifespan)
app.include_router(cell.cell_router)
