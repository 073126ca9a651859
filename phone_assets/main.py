from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from phone_assets.api.deps import domain_error_handler, request_validation_handler
from phone_assets.api.routers import directory, employee, identity, inventory, phones, transfers
from phone_assets.domain.errors import DomainError
from phone_assets.infra import locks
from phone_assets.infra.audit import AuditMiddleware
from phone_assets.infra.db import check_db_ready
from phone_assets.infra.logging import RequestIdMiddleware, setup_logging
from phone_assets.infra.redis_state import check_redis_ready

setup_logging()

app = FastAPI(
    title="phone-asset-registry",
    description="Lifecycle, transfer and inventory verification of company phone numbers.",
    version="0.1.0",
)

# Added last so it runs first and the audit row carries the request id.
app.add_middleware(AuditMiddleware)
app.add_middleware(RequestIdMiddleware)
app.add_exception_handler(DomainError, domain_error_handler)  # type: ignore[arg-type]
app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(directory.router, prefix="/api/directory", tags=["directory"])
app.include_router(phones.router, prefix="/api/phones", tags=["phones"])
app.include_router(transfers.router, prefix="/api/transfers", tags=["transfers"])
app.include_router(inventory.router, prefix="/api/inventory", tags=["inventory"])
app.include_router(employee.router, prefix="/api/employee", tags=["employee"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    ready = db_ok
    if locks.LOCK_BACKEND == "redis":
        redis_ok = check_redis_ready()
        checks["redis"] = "ok" if redis_ok else "fail"
        ready = ready and redis_ok
    if not ready:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
