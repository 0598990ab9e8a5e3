from typing import TYPE_CHECKING, Callable, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from fiber.logging_utils import get_logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from monitor.document_storage import StorageError
from monitor.views import NotFoundError, UpstreamUnavailableError

if TYPE_CHECKING:
    from service.uptime_service import UptimeMonitorService

logger = get_logger(__name__)


def error_response(message: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def require_api_key(api_key: Optional[str], config=None) -> None:
    """
    Validate the X-API-Key header against the configured value.

    :param api_key: The API key provided in the header, if any.
    :param config: The configuration object with API_KEY defined.
    :raises HTTPException: 401 when the header is missing, 403 when it
                           does not match. Nothing is checked when no key
                           is configured.
    """
    if not config or not getattr(config, "API_KEY", None):
        return  # No API key configured, skip validation

    if not api_key:
        raise HTTPException(status_code=401, detail="API Key header missing")
    if api_key != config.API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API Key")


def parse_phrase_number(value: Optional[str]) -> int:
    """Phrase number from a query value; ValueError when absent or invalid."""
    if value is None or str(value).strip() == "":
        raise ValueError("Missing phrase parameter")
    try:
        phrase_number = int(value)
    except ValueError:
        raise ValueError(f"Invalid phrase parameter: {value}")
    if phrase_number < 1:
        raise ValueError(f"Invalid phrase parameter: {value}")
    return phrase_number


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and request.url.path.startswith("/api/"):
        return error_response("API Endpoint not found", 404)
    return error_response(str(exc.detail), exc.status_code)


class MonitorAPI:
    def __init__(self, service: "UptimeMonitorService"):
        self.service = service
        self.views = service.views
        self.app = FastAPI(title="API Helper Uptime Monitor")
        self.app.add_exception_handler(StarletteHTTPException, http_error_handler)
        self.register_routes()

    def get_api_key_dependency(self) -> Callable:
        """Get a dependency function that checks the API key against config."""

        def check_api_key(api_key: Optional[str] = Header(None, alias="X-API-Key")):
            return require_api_key(api_key, config=self.service.config)

        return check_api_key

    def register_routes(self) -> None:
        self.app.add_api_route(
            "/healthcheck",
            self.healthcheck,
            methods=["GET"],
            tags=["healthcheck"],
        )

        self.app.add_api_route(
            "/api/dashboard",
            self.dashboard,
            methods=["GET"],
            tags=["views"],
        )

        self.app.add_api_route(
            "/api/recap",
            self.recap,
            methods=["GET"],
            tags=["views"],
        )

        self.app.add_api_route(
            "/api/validator",
            self.validator,
            methods=["GET"],
            tags=["views"],
        )

        self.app.add_api_route(
            "/api/validator/{address}",
            self.validator_by_address,
            methods=["GET"],
            tags=["views"],
        )

        self.app.add_api_route(
            "/api/metadata",
            self.metadata,
            methods=["GET"],
            tags=["documents"],
        )

        self.app.add_api_route(
            "/api/phrasedata",
            self.phrasedata,
            methods=["GET"],
            tags=["documents"],
        )

        self.app.add_api_route(
            "/api/data-latest",
            self.data_latest,
            methods=["GET"],
            tags=["documents"],
        )

        self.app.add_api_route(
            "/api/network-status",
            self.network_status,
            methods=["GET"],
            tags=["chain"],
        )

        # Triggered by cron or by the in-process loop's operators
        self.app.add_api_route(
            "/api/run-monitor",
            self.run_monitor,
            methods=["GET", "POST"],
            tags=["monitoring"],
            dependencies=[Depends(self.get_api_key_dependency())],
        )

    async def _respond(self, name: str, func, *args):
        try:
            return await func(*args)
        except NotFoundError as e:
            return error_response(str(e), 404)
        except UpstreamUnavailableError as e:
            logger.error(f"[{name}] {e}")
            return error_response(str(e), 500)
        except StorageError as e:
            logger.error(f"[{name}] Storage error: {e}")
            return error_response(str(e), 500)
        except Exception as e:
            logger.error(f"[{name}] Error: {e}")
            return error_response(str(e) or "Unknown error", 500)

    async def healthcheck(self):
        return self.service.healthcheck()

    async def dashboard(self):
        return await self._respond("dashboard", self.views.dashboard)

    async def recap(self):
        return await self._respond("recap", self.views.recap)

    async def validator(self, address: Optional[str] = None, phrase: Optional[str] = None):
        if not address:
            return error_response("Missing address parameter", 400)
        return await self.validator_by_address(address, phrase)

    async def validator_by_address(self, address: str, phrase: Optional[str] = None):
        phrase_number = None
        if phrase:
            try:
                phrase_number = parse_phrase_number(phrase)
            except ValueError as e:
                return error_response(str(e), 400)
        return await self._respond(
            "validator", self.views.validator_detail, address, phrase_number
        )

    async def metadata(self, phrase: Optional[str] = None):
        try:
            phrase_number = parse_phrase_number(phrase)
        except ValueError as e:
            return error_response(str(e), 400)
        return await self._respond("metadata", self.views.raw_metadata, phrase_number)

    async def phrasedata(self, phrase: Optional[str] = None):
        try:
            phrase_number = parse_phrase_number(phrase)
        except ValueError as e:
            return error_response(str(e), 400)
        return await self._respond(
            "phrasedata", self.views.raw_phrase_data, phrase_number
        )

    async def data_latest(self):
        return await self._respond("data-latest", self.views.data_latest)

    async def network_status(self):
        return await self._respond("network-status", self.views.network_status)

    async def run_monitor(self):
        try:
            summary = await self.service.run_monitor_cycle()
        except Exception as e:
            logger.error(f"[run-monitor] Error: {e}")
            return error_response(str(e) or "Unknown error", 500)
        return summary.to_response()
