"""
Base service class for gateway services.
"""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from typing import Dict, Optional
import time
import os

from shared.config import GatewayConfig, get_config
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector
from shared.errors import GatewayException


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type, x-session-token",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Referrer-Policy": "no-referrer",
}


def apply_response_headers(response: Response) -> Response:
    """Stamp the fixed CORS and hardening headers onto a response."""
    for name, value in {**CORS_HEADERS, **SECURITY_HEADERS}.items():
        response.headers[name] = value
    return response


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int, config: Optional[GatewayConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(port=port)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level)

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.on_startup()
            try:
                yield
            finally:
                await self.on_shutdown()

        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Guest QR portal - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=lifespan,
        )

    async def on_startup(self) -> None:
        """Start background work. Override in subclasses."""

    async def on_shutdown(self) -> None:
        """Release resources. Override in subclasses."""

    def _setup_middleware(self):
        """Set up middleware."""

        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            start_time = time.time()
            request_id = set_request_id(request.headers.get("X-Request-ID"))

            try:
                response = await call_next(request)
            except Exception as e:
                self.logger.error("Unhandled exception", error=str(e), path=request.url.path, exc_info=True)
                self.metrics.record_error(type(e).__name__)
                response = JSONResponse(status_code=500, content={"error": "Internal server error"})

            duration = time.time() - start_time
            self.metrics.record_http_request(
                method=request.method,
                endpoint=self._metric_endpoint(request),
                status_code=response.status_code,
                duration=duration
            )
            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2)
            )
            response.headers["X-Request-ID"] = request_id
            clear_context()
            return response

        # Registered last so it wraps everything, including preflight.
        @self.app.middleware("http")
        async def add_security_headers(request: Request, call_next):
            if request.method == "OPTIONS":
                return apply_response_headers(Response(status_code=200))
            response = await call_next(request)
            return apply_response_headers(response)

    @staticmethod
    def _metric_endpoint(request: Request) -> str:
        """Use the route template so path ids do not explode label cardinality."""
        route = request.scope.get("route")
        return getattr(route, "path", "unmatched")

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            try:
                dependencies = await self._check_dependencies()
                self.metrics.record_health_check("ok")

                return {
                    "service": self.service_name,
                    "status": "ok",
                    "uptime_seconds": self._get_uptime(),
                    "dependencies": dependencies,
                    "version": "1.0.0",
                    "commit": os.getenv("GIT_COMMIT", "unknown")
                }
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={
                        "service": self.service_name,
                        "status": "error",
                        "error": "Health check failed"
                    }
                )

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            from prometheus_client import CONTENT_TYPE_LATEST
            return Response(content=self.metrics.export(), media_type=CONTENT_TYPE_LATEST)

        @self.app.exception_handler(GatewayException)
        async def gateway_exception_handler(request: Request, exc: GatewayException):
            """Turn gateway errors into their status code and body."""
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log(
                "Gateway error",
                code=exc.code,
                message=exc.message,
                details=exc.details,
                path=request.url.path
            )
            self.metrics.record_error(exc.code)
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_body(),
                headers=exc.response_headers()
            )

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            """Unmatched method+path combinations are reported as not found."""
            if exc.status_code in (404, 405):
                return JSONResponse(status_code=404, content={"error": "Not found"})
            return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            details = [
                f"{'.'.join(str(part) for part in error['loc'][1:]) or 'request'}: {error['msg']}"
                for error in exc.errors()
            ]
            return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
