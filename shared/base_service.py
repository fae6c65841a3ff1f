"""
FastAPI service skeleton shared by the attestation token verifier.

Subclasses add their own routes and override ``_check_dependencies`` to
report on whatever remote systems they rely on.
"""

import os
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from shared.config import AttestationConfig, get_config
from shared.errors import VerifierException
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector

VERSION = "1.0.0"
REQUEST_ID_HEADER = "X-Request-ID"


class BaseService:
    """Wires configuration, logging, metrics and common routes into a FastAPI app."""

    def __init__(self, service_name: str, port: int, config: Optional[AttestationConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)

        configure_logging(service_name, self.config.log_level, json_output=not self.is_local)
        self.logger = get_logger(f"{service_name}.service")
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_exception_handlers()
        self._setup_routes()

    @property
    def is_local(self) -> bool:
        return self.config.env == "local"

    def _create_app(self) -> FastAPI:
        title = self.service_name.title()
        return FastAPI(
            title=f"{title} Service",
            description=f"{title} service: confidential-computing attestation token verification",
            version=VERSION,
            docs_url="/docs" if self.is_local else None,
            redoc_url="/redoc" if self.is_local else None,
        )

    def _setup_middleware(self):
        # Browsers are only let in locally
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.is_local else [],
            allow_credentials=False,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def request_context(request: Request, call_next):
            started = time.perf_counter()
            request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
            try:
                response = await call_next(request)
                elapsed = time.perf_counter() - started
                response.headers[REQUEST_ID_HEADER] = request_id

                self.metrics.record_http_request(
                    method=request.method,
                    endpoint=request.url.path,
                    status_code=response.status_code,
                    duration=elapsed
                )
                self.logger.info(
                    "HTTP request",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round(elapsed * 1000, 2)
                )
                return response
            finally:
                clear_context()

    def _setup_exception_handlers(self):
        @self.app.exception_handler(VerifierException)
        async def verifier_exception_handler(request: Request, exc: VerifierException):
            self.logger.warning(
                "Verification failed",
                code=exc.code,
                stage=exc.stage.value if exc.stage else None,
                error=exc.message
            )
            self.metrics.record_error(exc.code)
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response().model_dump()
            )

    def _setup_routes(self):
        @self.app.get("/health")
        async def health_check():
            """Liveness plus the state of remote dependencies."""
            dependencies = await self._check_dependencies()
            status = "ok" if all(state == "ok" for state in dependencies.values()) else "degraded"
            self.metrics.record_health_check(status)
            return self._health_payload(status, dependencies)

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus exposition."""
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    def _health_payload(self, status: str, dependencies: Dict[str, str]) -> Dict[str, Any]:
        return {
            "service": self.service_name,
            "status": status,
            "uptime_seconds": round(time.time() - self._start_time, 3),
            "dependencies": dependencies,
            "version": VERSION,
            "commit": os.getenv("GIT_COMMIT", "unknown")
        }

    async def _check_dependencies(self) -> Dict[str, str]:
        """Override in subclasses."""
        return {}

    def run(self):
        """Serve the app with uvicorn."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
