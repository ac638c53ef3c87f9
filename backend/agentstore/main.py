import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from agentstore.config import settings
from agentstore.routers import purchase, payments, agents, cron
from agentstore.services.payment_sweeper import run_payment_sweep
from agentstore.services.price_oracle import PriceOracle

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.price_oracle = PriceOracle()
    # Must run well inside the preconfirmation deadline window
    scheduler.add_job(
        run_payment_sweep,
        "interval",
        seconds=settings.REVERIFY_INTERVAL_SECONDS,
        id="payment_sweep",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Payment sweep scheduled every {settings.REVERIFY_INTERVAL_SECONDS}s")
    yield
    scheduler.shutdown()

app = FastAPI(title="AgentStore API", lifespan=lifespan)

_allowed_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] or ["http://localhost:3000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(purchase.router)
app.include_router(payments.router)
app.include_router(agents.router)
app.include_router(cron.router)

@app.get("/health")
async def health():
    return {"status": "ok"}
