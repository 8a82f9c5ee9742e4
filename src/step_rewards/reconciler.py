"""Multi-device reconciliation and device set management."""

import datetime as dt

import structlog

from .errors import PrimaryDeviceRequiredError, UnknownDeviceError
from .models import DeviceProfile, DeviceType, ReconciliationResult, SyncConflict

logger = structlog.get_logger(__name__)


def find_primary(devices: list[DeviceProfile]) -> DeviceProfile | None:
    return next((d for d in devices if d.is_primary), None)


class DeviceReconciler:
    """Treats the primary device as authoritative and flags disagreeing devices."""

    def __init__(self, tolerance_steps: int = 500):
        self.tolerance_steps = tolerance_steps

    def reconcile(
        self,
        devices: list[DeviceProfile],
        per_device_steps: dict[str, int],
        day: dt.date | None = None,
    ) -> ReconciliationResult:
        primary = find_primary(devices)
        if primary is None:
            return ReconciliationResult(primary_device_id=None, authoritative_steps=0, date=day)

        authoritative = per_device_steps.get(primary.device_id, 0)
        conflicts: list[SyncConflict] = []

        for device in devices:
            if device.is_primary:
                continue
            reported = per_device_steps.get(device.device_id, 0)
            delta = reported - authoritative
            if abs(delta) > self.tolerance_steps:
                conflicts.append(
                    SyncConflict(
                        device_id=device.device_id,
                        device_type=device.device_type,
                        reported_steps=reported,
                        delta=delta,
                    )
                )

        if conflicts:
            logger.info(
                "Device step counts disagree",
                user_id=primary.user_id,
                primary_device_id=primary.device_id,
                conflicts=len(conflicts),
            )

        return ReconciliationResult(
            primary_device_id=primary.device_id,
            authoritative_steps=authoritative,
            conflicts=conflicts,
            date=day,
        )

    # Device set operations. Each takes and returns the full device list.

    @staticmethod
    def connect(
        devices: list[DeviceProfile],
        user_id: str,
        device_id: str,
        device_type: DeviceType,
        now: dt.datetime,
    ) -> tuple[list[DeviceProfile], DeviceProfile]:
        """Add a device, or return the existing one. The first device becomes primary."""
        for device in devices:
            if device.device_id == device_id:
                return devices, device

        device = DeviceProfile(
            user_id=user_id,
            device_id=device_id,
            device_type=device_type,
            is_primary=find_primary(devices) is None,
            connected_at=now,
        )
        logger.info(
            "Device connected",
            user_id=user_id,
            device_id=device_id,
            device_type=device_type.value,
            is_primary=device.is_primary,
        )
        return [*devices, device], device

    @staticmethod
    def disconnect(devices: list[DeviceProfile], device_id: str) -> list[DeviceProfile]:
        target = next((d for d in devices if d.device_id == device_id), None)
        if target is None:
            raise UnknownDeviceError(device_id)
        if target.is_primary and len(devices) > 1:
            raise PrimaryDeviceRequiredError(
                f"promote another device before disconnecting primary {device_id}"
            )
        return [d for d in devices if d.device_id != device_id]

    @staticmethod
    def promote_primary(devices: list[DeviceProfile], device_id: str) -> list[DeviceProfile]:
        if not any(d.device_id == device_id for d in devices):
            raise UnknownDeviceError(device_id)
        for device in devices:
            device.is_primary = device.device_id == device_id
        return devices

    @staticmethod
    def set_permission(
        devices: list[DeviceProfile], device_id: str, revoked: bool
    ) -> DeviceProfile:
        for device in devices:
            if device.device_id == device_id:
                device.permission_revoked = revoked
                return device
        raise UnknownDeviceError(device_id)
