"""Registry API router."""

from fastapi import APIRouter, Depends, HTTPException

from bastion_registry.common.exceptions import (
    BastionError,
    MachineNotFoundError,
    NameConflictError,
    PoolExhaustedError,
    ValidationError,
)
from bastion_registry.common.schemas import OkResponse
from bastion_registry.common.security import require_api_key
from bastion_registry.registry.schemas import (
    HeartbeatRequest,
    MachineListEntry,
    RegisterRequest,
    RegisterResponse,
    RenameRequest,
    RenameResponse,
    StatusResponse,
)

router = APIRouter(prefix="/api")

_STATUS_CODES = {
    ValidationError: 400,
    MachineNotFoundError: 404,
    NameConflictError: 409,
    PoolExhaustedError: 503,
}


def _get_service():
    from bastion_registry.deps import get_registry_service
    return get_registry_service()


def _http_error(exc: BastionError) -> HTTPException:
    status_code = _STATUS_CODES.get(type(exc))
    if status_code is None:
        return HTTPException(status_code=500, detail="internal error")
    return HTTPException(status_code=status_code, detail=exc.message)


@router.get("/status", response_model=StatusResponse)
async def status():
    svc = _get_service()
    try:
        count = await svc.machine_count()
    except BastionError as e:
        raise _http_error(e)
    return StatusResponse(machine_count=count)


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(body: RegisterRequest, _=Depends(require_api_key)):
    svc = _get_service()
    try:
        return await svc.register(
            name=body.name,
            owner=body.owner,
            local_user=body.local_user,
            public_key=body.public_key,
        )
    except BastionError as e:
        raise _http_error(e)


@router.get(
    "/machines",
    response_model=list[MachineListEntry],
    response_model_exclude_none=True,
)
async def list_machines(_=Depends(require_api_key)):
    svc = _get_service()
    try:
        machines = await svc.list_machines()
    except BastionError as e:
        raise _http_error(e)
    return [MachineListEntry.model_validate(m) for m in machines]


@router.delete("/machines/{name}", response_model=OkResponse)
async def delete_machine(name: str, _=Depends(require_api_key)):
    svc = _get_service()
    try:
        await svc.delete(name)
    except BastionError as e:
        raise _http_error(e)
    return OkResponse()


@router.put("/machines/{name}/rename", response_model=RenameResponse)
async def rename_machine(name: str, body: RenameRequest, _=Depends(require_api_key)):
    svc = _get_service()
    try:
        machine = await svc.rename(name, body.new_name)
    except BastionError as e:
        raise _http_error(e)
    return RenameResponse(name=machine.name)


@router.post("/heartbeat", response_model=OkResponse)
async def heartbeat(body: HeartbeatRequest, _=Depends(require_api_key)):
    svc = _get_service()
    try:
        await svc.heartbeat(body.name)
    except BastionError as e:
        raise _http_error(e)
    return OkResponse()
