"""Shared Pydantic schemas for the bastion registry."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    service: str = "bastion-registry"


class OkResponse(BaseModel):
    ok: bool = True
