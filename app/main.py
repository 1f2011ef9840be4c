from fastapi import FastAPI

from app.api.routes.checkout import router as checkout_router
from app.api.routes.health import router as health_router
from app.api.routes.payment_redirect import router as payment_redirect_router
from app.core.config import settings
from app.core.logging import setup_logging


def create_app() -> FastAPI:
    setup_logging(settings.log_level)
    application = FastAPI(title="HealthyThako Payments API")
    application.include_router(health_router)
    application.include_router(payment_redirect_router)
    application.include_router(checkout_router)
    return application


app = create_app()
