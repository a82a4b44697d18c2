import json
import logging
import logging.config
from pathlib import Path

from fastapi import FastAPI

from clipdash.core.config import settings
from clipdash.domain import models  # noqa: F401
from clipdash.integrations.platform_adapters import list_registered_providers
from clipdash.interfaces.api.router import api_router
from clipdash.interfaces.http.errors import register_exception_handlers
from clipdash.interfaces.http.middleware import MetricsMiddleware, RequestIDMiddleware

logging_config_path = Path(__file__).with_name("logging.json")
if logging_config_path.exists():
    logging.config.dictConfig(json.loads(logging_config_path.read_text(encoding="utf-8")))
else:
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("clipdash")


def create_app() -> FastAPI:
    application = FastAPI(title=settings.app_name)
    application.add_middleware(RequestIDMiddleware)
    application.add_middleware(MetricsMiddleware)
    register_exception_handlers(application)
    application.include_router(api_router)
    logger.info(
        "scheduler_api_configured env=%s providers=%s worker_secret_set=%s",
        settings.app_env,
        ",".join(list_registered_providers()),
        bool(settings.worker_secret),
    )
    return application


app = create_app()
