from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .book_router import router as book_router
from .book_router import shutdown_registry
from .config import get_settings
from .packing.estimator import COMPRESSION_MULTIPLIERS, PDF_OVERHEAD_BASE, PDF_OVERHEAD_PER_PAGE
from .packing.types import MIB

logger = logging.getLogger("uvicorn.error")
settings = get_settings()

app = FastAPI(title="Memory Book Binder", version="0.1.0")
app.include_router(book_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allow_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/ping")
def ping() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/meta/limits")
def get_limits() -> Dict[str, Any]:
    settings = get_settings()
    return {
        "packing": {
            "ceiling_mb": settings.ceiling_mb,
            "ceiling_bytes": int(settings.ceiling_mb * MIB),
            "safety_margin_percent": settings.safety_margin_percent,
            "compression_level": settings.compression_level.value,
            "verify_threshold": settings.verify_threshold,
        },
        "estimator": {
            "overhead_base_bytes": PDF_OVERHEAD_BASE,
            "overhead_per_item_bytes": PDF_OVERHEAD_PER_PAGE,
            "compression_multipliers": {level.value: value for level, value in COMPRESSION_MULTIPLIERS.items()},
        },
        "storage": {
            "backend": "drive" if settings.drive_access_token else "local",
            "root_folder": settings.drive_root_folder_name,
        },
    }


@app.on_event("startup")
def log_startup() -> None:
    settings = get_settings()
    logger.info(
        "Packing defaults: ceiling=%sMB, margin=%s%%, level=%s",
        settings.ceiling_mb,
        settings.safety_margin_percent,
        settings.compression_level.value,
    )
    logger.info("Storage backend: %s", "Google Drive" if settings.drive_access_token else settings.output_dir)


@app.on_event("shutdown")
async def stop_sessions() -> None:
    await shutdown_registry()
