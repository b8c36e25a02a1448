"""
FastAPI application implementing a minimal Esri GeoServices REST API.

Endpoints implemented:
- /rest/info
- /rest/services
- /rest/services/{service_id}/FeatureServer
- /rest/services/{service_id}/FeatureServer/{layer_id}
- /rest/services/{service_id}/FeatureServer/{layer_id}/query

The service_id is the configured service name, and layer_id maps to
a layer in the catalog.
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from pg_featureserver.config import get_settings
from pg_featureserver.query.catalog import get_catalog
from pg_featureserver.query.errors import FeatureServerError
from pg_featureserver.query.executor import close_pool, get_pool

from .metadata import CURRENT_VERSION
from .routes import feature_server

logger = logging.getLogger(__name__)
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the catalog and open the connection pool for the app lifetime."""
    catalog = get_catalog()
    logger.info("Serving %d layers", len(catalog))
    get_pool()
    try:
        yield
    finally:
        close_pool()


app = FastAPI(
    title="PostGIS GeoServices",
    description="Esri GeoServices REST API backed by PostGIS",
    root_path=os.environ.get("ROOT_PATH", ""),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def log_request_timing(request: Request, call_next):
    """Log request timing for performance monitoring."""
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - start
    # Only log query requests (the slow path) at INFO level
    path = request.url.path
    if "/query" in path or elapsed > 1.0:
        logger.info(
            "%s %s → %d (%.2fs, %s bytes)",
            request.method,
            request.url,
            response.status_code,
            elapsed,
            response.headers.get("content-length", "?"),
        )
    return response


@app.exception_handler(FeatureServerError)
async def feature_server_error(request: Request, exc: FeatureServerError):
    """Return the Esri JSON error envelope."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(feature_server.router, prefix="/rest/services")


@app.get("/rest/info")
@app.post("/rest/info")
async def rest_info():
    """ArcGIS REST service directory info."""
    return {
        "currentVersion": CURRENT_VERSION,
        "fullVersion": "10.5.1",
        "owningSystemUrl": "",
        "authInfo": {"isTokenBasedSecurity": False},
    }


@app.get("/rest/services")
@app.post("/rest/services")
async def services_directory():
    """Services directory listing the FeatureServer service."""
    return {
        "currentVersion": CURRENT_VERSION,
        "folders": [],
        "services": [
            {"name": get_settings().service_name, "type": "FeatureServer"}
        ],
    }
