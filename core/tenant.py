"""Tenant identification.

The tenant is taken from a request header once, at the edge, and then passed
explicitly as ``tenant_id`` through every service call.
"""

from fastapi import Header, HTTPException

from core.config import settings


async def get_tenant_id(
    tenant_id: str = Header(..., alias=settings.TENANT_HEADER, max_length=255),
) -> str:
    """FastAPI dependency returning the caller's tenant id."""
    tenant_id = tenant_id.strip()
    if not tenant_id:
        raise HTTPException(status_code=422, detail=f"{settings.TENANT_HEADER} header must not be blank")
    return tenant_id
