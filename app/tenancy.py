from __future__ import annotations

from fastapi import Header, Request

from app.errors import ApiError


def get_tenant_id(
    request: Request,
    x_tenant_id: str | None = Header(default=None, alias="X-Tenant-Id"),
) -> int:
    """Resolve the tenant every request is scoped to.

    Authentication sits in front of this service; it forwards the caller's
    tenant in the ``X-Tenant-Id`` header.
    """
    raw_value = (x_tenant_id or "").strip()
    if not raw_value:
        raise ApiError(status_code=400, code="TENANT_REQUIRED", message="X-Tenant-Id header is required.")
    try:
        tenant_id = int(raw_value)
    except ValueError:
        raise ApiError(status_code=400, code="INVALID_TENANT", message="X-Tenant-Id must be an integer.") from None
    if tenant_id < 1:
        raise ApiError(status_code=400, code="INVALID_TENANT", message="X-Tenant-Id must be positive.")

    request.state.tenant_id = tenant_id
    return tenant_id
