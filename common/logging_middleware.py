"""HTTP audit logging middleware shared by services."""
from __future__ import annotations

import logging
from pathlib import Path
from time import perf_counter
from typing import Optional

from fastapi import FastAPI, Request

from .auth import bearer_claims
from .config import get_settings


def _build_logger(service_name: str) -> logging.Logger:
    logger = logging.getLogger(f"audit.{service_name}")
    if logger.handlers:
        return logger

    log_dir = Path(get_settings().log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.setLevel(logging.INFO)
    handler = logging.FileHandler(log_dir / f"{service_name}.log")
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger


def add_audit_middleware(app: FastAPI, service_name: str) -> None:
    logger = _build_logger(service_name)

    @app.middleware("http")
    async def audit_logger(request: Request, call_next):  # type: ignore[override]
        start = perf_counter()
        client_ip: Optional[str] = request.client.host if request.client else None
        user = bearer_claims(request.headers.get("Authorization")).get("sub") or "anonymous"
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "%s %s | status=500 | client=%s | user=%s | duration=%.2fms",
                request.method,
                request.url.path,
                client_ip or "unknown",
                user,
                (perf_counter() - start) * 1000,
            )
            raise
        logger.info(
            "%s %s | status=%s | client=%s | user=%s | duration=%.2fms",
            request.method,
            request.url.path,
            response.status_code,
            client_ip or "unknown",
            user,
            (perf_counter() - start) * 1000,
        )
        return response
