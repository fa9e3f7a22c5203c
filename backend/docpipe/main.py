from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docpipe.core.config import settings
from docpipe.core.errors import InvalidInput, PipelineError
from docpipe.modules.pipeline.rate_limiter import RateLimiter
from docpipe.modules.pipeline.router import router as pipeline_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("Starting Document Intelligence Pipeline API")
    app.state.http_client = httpx.AsyncClient(timeout=settings.ai_timeout_seconds)
    yield
    await app.state.http_client.aclose()
    logger.info("Shutting down Document Intelligence Pipeline API")


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
)

app.state.rate_limiter = RateLimiter()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    error = InvalidInput(".".join(loc) or "body", first.get("msg", "Invalid request"))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Mount routers
app.include_router(pipeline_router, prefix=settings.api_prefix)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
