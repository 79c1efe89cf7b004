import time
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .log import configure_logging
from .metrics import UNMATCHED_ROUTE, MetricsRegistry, init_metrics
from .providers.base import CostProvider
from .providers.factory import create_providers
from .routes import router


def create_app(settings: Optional[Settings] = None,
               providers: Optional[Dict[str, CostProvider]] = None,
               metrics: Optional[MetricsRegistry] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    if providers is None:
        providers = create_providers(settings)
    if metrics is None:
        metrics = init_metrics(settings.metrics_sample_seconds)

    app = FastAPI(title="CostInsight API", version="1.0.0")
    app.state.providers = providers
    app.state.metrics = metrics

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def record_request_duration(request: Request, call_next):
        start = time.perf_counter()
        code = 500
        try:
            response = await call_next(request)
            code = response.status_code
            return response
        finally:
            # the router leaves the matched route in the shared scope; unmatched
            # paths share one label so scanners cannot grow the registry
            route = request.scope.get("route")
            metrics.observe_request(request.method, getattr(route, "path", UNMATCHED_ROUTE), code,
                                    (time.perf_counter() - start) * 1000)

    @app.on_event("startup")
    def startup_event():
        metrics.start_sampling()

    @app.on_event("shutdown")
    def shutdown_event():
        metrics.stop_sampling()

    @app.get("/api/health")
    def health():
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics_endpoint():
        output, ctype = metrics.render()
        return Response(content=output, media_type=ctype)

    app.include_router(router)
    return app


app = create_app()
