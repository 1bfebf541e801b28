import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis.asyncio import Redis

from config import settings
from models import async_session, engine, init_models
from api.jira import router as jira_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("relay.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Tracker relay starting... DEBUG=%s", settings.DEBUG)

    await init_models()

    # Redis
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=False)
    app.state.redis = redis
    logger.info("Redis connected: %s", settings.REDIS_URL)

    # Jira relay + Telegram bot
    module = None
    bot = None
    if settings.RELAY_ENABLED and settings.TELEGRAM_BOT_TOKEN:
        from services.jira import JiraRelayModule
        from services.telegram_bot import RelayBot, TelegramTransport

        application = RelayBot.build_application()
        transport = TelegramTransport(application.bot, settings.TELEGRAM_MIN_INTERVAL)
        module = JiraRelayModule(redis, async_session, transport)
        bot = RelayBot(application, module)
        app.state.jira_relay = module

        await bot.start()
        await module.start()
        logger.info("Jira relay enabled")
    else:
        logger.info("Jira relay DISABLED (RELAY_ENABLED=false or no TELEGRAM_BOT_TOKEN)")

    yield

    # Shutdown
    logger.info("Tracker relay shutting down...")
    if module:
        await module.stop()
    if bot:
        await bot.stop()

    await redis.close()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Tracker Relay API",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(jira_router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}
