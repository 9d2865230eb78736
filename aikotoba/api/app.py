"""
Aikotoba API — HTTP boundary of the vault.

Callers identify themselves with ``X-Account-Id`` (signed in) or
``X-Device-Token`` (anonymous). Every vault error maps to a status code and a
``{"error": <code>}`` body; nothing secret is ever echoed back.

Start:
  aikotoba serve
  # or
  uvicorn aikotoba.api.app:app --host 0.0.0.0 --port 9200
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from aikotoba import __version__
from aikotoba.api.routes import router
from aikotoba.vault import errors
from aikotoba.vault.service import VaultService

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: dict[type[errors.VaultError], int] = {
    errors.NotFound: 404,
    errors.KeywordAlreadyExists: 409,
    errors.EntryUnavailable: 409,
    errors.InvalidGuessFormat: 400,
    errors.InvalidPasscode: 400,
    errors.InvalidLength: 400,
    errors.LengthNotIncreasing: 400,
    errors.InvalidIdentity: 400,
    errors.NotOwner: 403,
    errors.OwnerCannotChallenge: 403,
    errors.EntitlementMissing: 402,
    errors.LimitExceeded: 429,
    errors.StoreUnavailable: 503,
}


def status_for(exc: errors.VaultError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return 500


async def _vault_error_handler(request: Request, exc: errors.VaultError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code)
    return JSONResponse({"error": exc.code}, status_code=status)


async def _value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse({"error": "invalid_request"}, status_code=400)


def create_app(service: VaultService | None = None) -> FastAPI:
    app = FastAPI(
        title="Aikotoba Vault",
        description="Keyword notes guarded by a guessable passcode.",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.service = service
    app.add_exception_handler(errors.VaultError, _vault_error_handler)
    app.add_exception_handler(ValueError, _value_error_handler)
    app.include_router(router)

    @app.get("/health")
    def health():
        return {"status": "ok", "version": __version__}

    return app


app = create_app()
