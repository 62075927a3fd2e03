from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from backend.app.api.endpoints import router as api_router
from backend.app.core.config import settings
from backend.app.core.cors import StreamAwareCORSMiddleware
from backend.app.core.errors import MidStreamFailure
from backend.app.models.schemas import ErrorResponse
from backend.app.services.jobs import transfer_registry
from backend.app.services.upstream import upstream_client
import logging
import os
import uvicorn

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

AVAILABLE_ENDPOINTS = [
    f"GET {settings.API_PREFIX}/homepage",
    f"GET {settings.API_PREFIX}/trending",
    f"GET {settings.API_PREFIX}/search/:query",
    f"GET {settings.API_PREFIX}/info/:movieId",
    f"GET {settings.API_PREFIX}/sources/:movieId",
    f"GET {settings.API_PREFIX}/download/*",
    f"GET {settings.API_PREFIX}/stream/*",
]

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{settings.PROJECT_NAME} starting, catalog host {settings.MOVIEBOX_API_HOST}")
    try:
        yield
    finally:
        await transfer_registry.close_all()
        await upstream_client.aclose()
        logger.info(f"{settings.PROJECT_NAME} stopped")

app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

app.add_middleware(
    StreamAwareCORSMiddleware,
    passthrough_prefix=f"{settings.API_PREFIX}/stream/",
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization", "Range"],
)

app.include_router(api_router, prefix=settings.API_PREFIX)

@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        body = ErrorResponse(status=404, message="Endpoint not found").model_dump(exclude_none=True)
        body["availableEndpoints"] = AVAILABLE_ENDPOINTS
        return JSONResponse(status_code=404, content=body)
    body = ErrorResponse(status=exc.status_code, message=str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True), headers=exc.headers)

@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    if isinstance(exc, MidStreamFailure):
        # Headers are already out, the server aborts the connection
        raise exc
    # Only reaches the client when no response has started yet
    logger.error(f"Unhandled error: {exc!r}")
    body = ErrorResponse(status=500, message="Internal server error", error=str(exc))
    return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))

@app.get("/")
async def index():
    if os.path.exists(settings.INDEX_HTML):
        return FileResponse(settings.INDEX_HTML)
    return {"status": 200, "success": "true", "message": f"{settings.PROJECT_NAME} is running"}

@app.get("/health")
async def health():
    return {
        "status": 200,
        "success": "true",
        "message": f"{settings.PROJECT_NAME} is running",
        "active_transfers": transfer_registry.active,
    }

def run():
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)

if __name__ == "__main__":
    run()
