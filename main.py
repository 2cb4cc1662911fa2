from __future__ import annotations

import logging

from fastapi import FastAPI

from api import create_router
from config import Settings
from repository import BookingRepository, InMemoryBookingRepository
from services import BookingService
from sql_repository import SqlAlchemyBookingRepository

logger = logging.getLogger(__name__)


def build_repository(settings: Settings) -> BookingRepository:
    if settings.store == "sql":
        logger.info("Using SQL booking store at %s", settings.database_url)
        return SqlAlchemyBookingRepository.from_url(settings.database_url)
    logger.info("Using in-memory booking store")
    return InMemoryBookingRepository()


def create_app(repo: BookingRepository, settings: Settings) -> FastAPI:
    service = BookingService(repo, min_duration=settings.min_duration())
    app = FastAPI(title="Position Booking API", version="1.0.0")
    app.include_router(create_router(service, owner_header=settings.owner_header))
    return app


settings = Settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Wire up dependencies
_repo = build_repository(settings)
app = create_app(_repo, settings)
