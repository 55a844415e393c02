"""Database chat agent service: FastAPI app, Prisma metadata store, package logging."""

from dotenv import load_dotenv

load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prisma import Prisma

from datachat.api.v1.router import api_router
from datachat.core.config import get_settings, is_development

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _configure_logging() -> None:
    # uvicorn only configures its own loggers; datachat.* would otherwise be silent
    package_log = logging.getLogger("datachat")
    package_log.setLevel(logging.INFO)
    if package_log.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    package_log.addHandler(handler)


_configure_logging()

logger = logging.getLogger(__name__)
settings = get_settings()
prisma = Prisma(auto_register=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await prisma.connect()
    app.state.prisma = prisma
    logger.info(
        "STARTUP | metadata store connected, environment=%s (outbound TLS %s)",
        settings.ENVIRONMENT,
        "off" if is_development(settings) else "on",
    )
    try:
        yield
    finally:
        if prisma.is_connected():
            await prisma.disconnect()
        logger.info("SHUTDOWN | metadata store disconnected")


app = FastAPI(title="Database Chat Agent API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    return {"service": "datachat", "status": "ok"}


@app.get("/health")
async def health():
    """Metadata store connectivity. Per-request user database pools are not tracked here."""
    return {"database_connected": prisma.is_connected()}
