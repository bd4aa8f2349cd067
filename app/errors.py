import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.services.acumatica.client import ConfigurationError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Unhandled failures become JSON 500s; business failures never reach here."""

    @app.exception_handler(ConfigurationError)
    async def _configuration_error(request: Request, exc: ConfigurationError):
        return JSONResponse(status_code=200, content={"success": False, "error": str(exc)})

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):
        logger.exception("unhandled_error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error"},
        )
