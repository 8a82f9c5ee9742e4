"""REST endpoints for device management and reconciliation."""

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..dependencies import get_engine
from ..engine import RewardsEngine
from ..models import DeviceProfile, DeviceType, ReconciliationResult

router = APIRouter(prefix="/users/{user_id}/devices", tags=["devices"])


class DeviceRegistration(BaseModel):
    device_id: str = Field(min_length=1)
    device_type: DeviceType


class PermissionUpdate(BaseModel):
    revoked: bool = Field(description="True when health data access was withdrawn")


@router.get("", response_model=list[DeviceProfile])
async def list_devices(
    user_id: str, engine: RewardsEngine = Depends(get_engine)
) -> list[DeviceProfile]:
    return await engine.list_devices(user_id)


@router.post("", response_model=DeviceProfile, status_code=status.HTTP_201_CREATED)
async def connect_device(
    user_id: str,
    registration: DeviceRegistration,
    engine: RewardsEngine = Depends(get_engine),
) -> DeviceProfile:
    """Connect a device. The first device of a user becomes primary."""
    return await engine.connect_device(user_id, registration.device_id, registration.device_type)


@router.get("/reconcile", response_model=ReconciliationResult)
async def reconcile_devices(
    user_id: str, engine: RewardsEngine = Depends(get_engine)
) -> ReconciliationResult:
    """Compare today's per-device counts against the primary device."""
    return await engine.reconcile_devices(user_id)


@router.delete("/{device_id}", response_model=list[DeviceProfile])
async def disconnect_device(
    user_id: str, device_id: str, engine: RewardsEngine = Depends(get_engine)
) -> list[DeviceProfile]:
    return await engine.disconnect_device(user_id, device_id)


@router.post("/{device_id}/primary", response_model=list[DeviceProfile])
async def promote_primary(
    user_id: str, device_id: str, engine: RewardsEngine = Depends(get_engine)
) -> list[DeviceProfile]:
    return await engine.promote_primary(user_id, device_id)


@router.put("/{device_id}/permission", response_model=DeviceProfile)
async def update_permission(
    user_id: str,
    device_id: str,
    update: PermissionUpdate,
    engine: RewardsEngine = Depends(get_engine),
) -> DeviceProfile:
    if update.revoked:
        return await engine.revoke_permission(user_id, device_id)
    return await engine.restore_permission(user_id, device_id)
