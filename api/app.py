from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes.settings import router as settings_router
from api.routes.sync import router as sync_router
from readwise_mirror.sync import ConfigurationError, SyncInProgressError


def create_app() -> FastAPI:
    app = FastAPI(title="Readwise Mirror API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sync_router)
    app.include_router(settings_router)

    @app.exception_handler(ConfigurationError)
    def configuration_error(request: Request, exc: ConfigurationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(SyncInProgressError)
    def sync_in_progress(request: Request, exc: SyncInProgressError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.get("/healthz")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
