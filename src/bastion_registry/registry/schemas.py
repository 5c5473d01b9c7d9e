"""Pydantic schemas for registry endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class RegisterRequest(BaseModel):
    name: str
    owner: str
    local_user: str
    public_key: str


class RegisterResponse(BaseModel):
    name: str
    port: int
    server: str
    tunnel_port: int
    ssh_user: str
    server_public_key: str


class MachineListEntry(BaseModel):
    name: str
    owner: str
    port: int
    local_user: str
    last_seen: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RenameRequest(BaseModel):
    new_name: str


class RenameResponse(BaseModel):
    ok: bool = True
    name: str


class HeartbeatRequest(BaseModel):
    name: str


class StatusResponse(BaseModel):
    status: str = "ok"
    machine_count: int
