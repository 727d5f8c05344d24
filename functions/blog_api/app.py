"""
FastAPI application entry point for the blog content API.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from blog_api.config import get_settings
from blog_api.errors import ConflictError, NotFoundError, StoreError
from blog_api.pages import router as pages_router
from blog_api.routes import router

logger = logging.getLogger(__name__)


async def _validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400, content={"detail": jsonable_encoder(exc.errors())}
    )


async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _conflict(_: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def _store_error(request: Request, exc: StoreError) -> JSONResponse:
    logger.error(
        "Store failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc
    )
    return JSONResponse(status_code=500, content={"detail": str(exc)})


CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]


class PreflightCORSMiddleware(CORSMiddleware):
    """CORSMiddleware whose accepted preflight responses carry an empty body."""

    def preflight_response(self, request_headers) -> Response:
        response = super().preflight_response(request_headers)
        headers = {
            name: value
            for name, value in response.headers.items()
            if name not in ("content-length", "content-type")
        }
        return Response(status_code=response.status_code, headers=headers)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Blog Content API", version="0.1.0")
    app.add_middleware(
        PreflightCORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=CORS_METHODS,
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(ConflictError, _conflict)
    app.add_exception_handler(StoreError, _store_error)
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(pages_router)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    # OPTIONS without the preflight headers never reaches the middleware's
    # preflight branch.
    @app.options("/{path:path}", include_in_schema=False)
    def options(path: str) -> Response:
        headers = {
            "Access-Control-Allow-Methods": ", ".join(CORS_METHODS),
            "Access-Control-Allow-Headers": "Content-Type, Authorization",
        }
        if "*" in settings.cors_allow_origins:
            headers["Access-Control-Allow-Origin"] = "*"
        return Response(status_code=200, headers=headers)

    return app


app = create_app()
