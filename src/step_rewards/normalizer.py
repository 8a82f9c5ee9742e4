"""Converts platform-specific raw payloads into canonical step samples."""

import datetime as dt
from typing import Any, Callable, Mapping

from .errors import MalformedSampleError
from .models import SampleSource, StepSample

MS_TO_KMH = 3.6

# Epoch values above this are treated as milliseconds
_EPOCH_MS_CUTOFF = 10_000_000_000


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def parse_steps(value: Any) -> int:
    """Parse a step count, clamping negatives to zero."""
    if value is None or isinstance(value, bool):
        raise MalformedSampleError(f"steps must be an integer, got {value!r}")

    if isinstance(value, str):
        value = value.strip()
        try:
            value = float(value) if any(c in value for c in ".eE") else int(value)
        except ValueError:
            raise MalformedSampleError(f"steps is not numeric: {value!r}") from None

    if isinstance(value, float):
        if not value.is_integer():
            raise MalformedSampleError(f"steps must be whole, got {value!r}")
        value = int(value)

    if not isinstance(value, int):
        raise MalformedSampleError(f"steps must be an integer, got {type(value).__name__}")

    return max(value, 0)


def parse_timestamp(value: Any, default: dt.datetime) -> dt.datetime:
    """Parse ISO strings, epoch seconds/milliseconds or datetimes into aware UTC."""
    if value is None:
        return default

    if isinstance(value, dt.datetime):
        ts = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if abs(value) >= _EPOCH_MS_CUTOFF else value
        try:
            ts = dt.datetime.fromtimestamp(seconds, tz=dt.UTC)
        except (OverflowError, OSError, ValueError) as e:
            raise MalformedSampleError(f"timestamp out of range: {value!r}") from e
    elif isinstance(value, str):
        try:
            ts = dt.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise MalformedSampleError(f"unparseable timestamp: {value!r}") from None
    else:
        raise MalformedSampleError(f"unsupported timestamp type: {type(value).__name__}")

    if ts.tzinfo is None:
        return ts.replace(tzinfo=dt.UTC)
    return ts.astimezone(dt.UTC)


def _parse_float(value: Any, field: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedSampleError(f"{field} must be numeric")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise MalformedSampleError(f"{field} must be numeric, got {value!r}") from None


def _parse_battery(value: Any) -> int | None:
    level = _parse_float(value, "battery_level")
    if level is None:
        return None
    return min(max(int(level), 0), 100)


def _native_health(payload: Mapping[str, Any], received_at: dt.datetime) -> dict:
    speed_kmh = _parse_float(payload.get("speed_kmh"), "speed_kmh")
    speed_mps = _parse_float(payload.get("speed_mps"), "speed_mps")
    if speed_kmh is None and speed_mps is not None:
        speed_kmh = speed_mps * MS_TO_KMH

    location = payload.get("location") or {}
    accuracy = _first(location, "accuracy") if isinstance(location, Mapping) else None
    if accuracy is None:
        accuracy = payload.get("gps_accuracy_meters")

    return {
        "steps": parse_steps(_first(payload, "steps", "value")),
        "timestamp": parse_timestamp(_first(payload, "end_date", "timestamp"), received_at),
        "speed_kmh": speed_kmh,
        "gps_accuracy_meters": _parse_float(accuracy, "accuracy"),
    }


def _wearable(payload: Mapping[str, Any], received_at: dt.datetime) -> dict:
    return {
        "steps": parse_steps(_first(payload, "step_count", "steps")),
        "timestamp": parse_timestamp(_first(payload, "recorded_at", "timestamp"), received_at),
        "speed_kmh": _parse_float(payload.get("speed_kmh"), "speed_kmh"),
        "gps_accuracy_meters": _parse_float(
            _first(payload, "gps_accuracy_m", "gps_accuracy_meters"), "gps_accuracy"
        ),
        "battery_level": _parse_battery(payload.get("battery_level")),
    }


def _manual(payload: Mapping[str, Any], received_at: dt.datetime) -> dict:
    # Manual entries never carry trustworthy location
    return {
        "steps": parse_steps(payload.get("steps")),
        "timestamp": parse_timestamp(_first(payload, "entered_at", "timestamp"), received_at),
    }


def _web_fallback(payload: Mapping[str, Any], received_at: dt.datetime) -> dict:
    return {
        "steps": parse_steps(payload.get("steps")),
        "timestamp": parse_timestamp(payload.get("timestamp"), received_at),
        "speed_kmh": _parse_float(payload.get("speed_kmh"), "speed_kmh"),
        "gps_accuracy_meters": _parse_float(
            payload.get("gps_accuracy_meters"), "gps_accuracy_meters"
        ),
    }


_PARSERS: dict[SampleSource, Callable[[Mapping[str, Any], dt.datetime], dict]] = {
    SampleSource.NATIVE_HEALTH: _native_health,
    SampleSource.WEARABLE: _wearable,
    SampleSource.MANUAL: _manual,
    SampleSource.WEB_FALLBACK: _web_fallback,
}

_missing = set(SampleSource) - set(_PARSERS)
if _missing:
    raise RuntimeError(f"no payload parser for sources: {sorted(s.value for s in _missing)}")


def parse_source(value: Any) -> SampleSource:
    try:
        return SampleSource(value)
    except ValueError:
        raise MalformedSampleError(f"unknown sample source: {value!r}") from None


def normalize(
    raw_payload: Mapping[str, Any], device_id: str, received_at: dt.datetime
) -> StepSample:
    """Build a canonical StepSample from a raw payload.

    Raises:
        MalformedSampleError: if the source or step count cannot be parsed.
    """
    if not isinstance(raw_payload, Mapping):
        raise MalformedSampleError("payload must be an object")

    source = parse_source(raw_payload.get("source"))
    fields = _PARSERS[source](raw_payload, received_at)
    return StepSample(source=source, device_id=device_id, received_at=received_at, **fields)
