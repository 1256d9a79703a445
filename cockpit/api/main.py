"""
Cockpit API application.

``create_app`` wires the catalog, executor, cache and coordinators onto
``app.state`` so tests can inject their own; ``app`` is the default
instance built from environment configuration.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cockpit.assembler.assembler import WidgetDataAssembler
from cockpit.assembler.cache import WidgetCache, create_cache
from cockpit.core.constants import API_VERSION, CATALOG_PATH, CORS_ORIGINS, utc_now
from cockpit.executor import QueryExecutor, create_executor
from cockpit.filters.cross_filter import CrossFilterCoordinator
from cockpit.metrics.registry import MetricRegistry
from cockpit.utils.log_utils import get_logger, setup_logging

from .routes import router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await app.state.executor.close()
    await app.state.cache.close()
    logger.info("Cockpit API shut down")


def _default_registry() -> MetricRegistry:
    if CATALOG_PATH.exists():
        return MetricRegistry.from_yaml(CATALOG_PATH)
    logger.warning(f"Metric catalog not found: {CATALOG_PATH}, starting empty")
    return MetricRegistry()


def create_app(
    registry: Optional[MetricRegistry] = None,
    executor: Optional[QueryExecutor] = None,
    cache: Optional[WidgetCache] = None,
    *,
    apply_cross_filters: bool = False,
) -> FastAPI:
    setup_logging()
    app = FastAPI(title="Metric Cockpit API", version=API_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.registry = registry or _default_registry()
    app.state.executor = executor or create_executor()
    app.state.cache = cache or create_cache()
    app.state.cross_filters = CrossFilterCoordinator()
    app.state.assembler = WidgetDataAssembler(
        app.state.registry,
        app.state.executor,
        app.state.cache,
        cross_filters=app.state.cross_filters,
        apply_cross_filters=apply_cross_filters,
    )

    app.include_router(router)

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "version": API_VERSION,
            "metrics": len(app.state.registry.list_metrics()),
            "timestamp": utc_now(),
        }

    return app


app = create_app()
