import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.api.routes.custodians import router as custodians_router
from backend.app.api.routes.exceptions import router as exceptions_router
from backend.app.api.routes.portfolio import router as portfolio_router
from backend.app.api.routes.reports import router as reports_router
from backend.app.api.routes.rewards import router as rewards_router
from backend.app.api.routes.validators import router as validators_router


logger = logging.getLogger(__name__)

DEV_ORIGINS = ("http://localhost:3000", "http://127.0.0.1:3000")


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if raw is None:
        origins = list(DEV_ORIGINS)
    else:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not be empty.")
    if not any(origin in origins for origin in DEV_ORIGINS):
        logger.warning("CORS allowlist does not include local dev origins: %s", origins)
    return origins


app = FastAPI(title="Staking Portfolio API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"ok": True}


app.include_router(portfolio_router)
app.include_router(exceptions_router)
app.include_router(reports_router)
app.include_router(custodians_router)
app.include_router(validators_router)
app.include_router(rewards_router)
