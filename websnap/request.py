"""Capture request model: device profiles, quality levels, validated requests."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping
from uuid import uuid4

from websnap.errors import InvalidInputError
from websnap.urls import normalize_url

__all__ = [
    "Device",
    "Quality",
    "DeviceProfile",
    "DEVICE_PROFILES",
    "QUALITY_LEVELS",
    "CaptureRequest",
    "build_capture_request",
    "new_request_id",
]


class Device(str, Enum):
    DESKTOP = "desktop"
    TABLET = "tablet"
    MOBILE = "mobile"


class Quality(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True, slots=True)
class DeviceProfile:
    """Fixed viewport and identity presented to the page."""

    width: int
    height: int
    user_agent: str
    is_mobile: bool = False
    has_touch: bool = False


DEVICE_PROFILES: Mapping[Device, DeviceProfile] = {
    Device.DESKTOP: DeviceProfile(
        width=1440,
        height=900,
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
    ),
    Device.TABLET: DeviceProfile(
        width=768,
        height=1024,
        user_agent=(
            "Mozilla/5.0 (iPad; CPU OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
        ),
        has_touch=True,
    ),
    Device.MOBILE: DeviceProfile(
        width=375,
        height=812,
        user_agent=(
            "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
        ),
        is_mobile=True,
        has_touch=True,
    ),
}

QUALITY_LEVELS: Mapping[Quality, int] = {
    Quality.HIGH: 95,
    Quality.MEDIUM: 80,
    Quality.LOW: 60,
}


def new_request_id() -> str:
    return uuid4().hex[:12]


@dataclass(frozen=True, slots=True)
class CaptureRequest:
    """A validated, immutable capture request."""

    url: str
    device: Device = Device.DESKTOP
    quality: Quality = Quality.MEDIUM
    request_id: str = field(default_factory=new_request_id)

    @property
    def device_profile(self) -> DeviceProfile:
        return DEVICE_PROFILES[self.device]

    @property
    def jpeg_quality(self) -> int:
        return QUALITY_LEVELS[self.quality]


def build_capture_request(
    url: object,
    device: object = Device.DESKTOP.value,
    quality: object = Quality.MEDIUM.value,
    *,
    request_id: str | None = None,
) -> CaptureRequest:
    """Validate raw ingress values and return a ``CaptureRequest``.

    Raises ``InvalidInputError`` before any browser resource is touched.
    """

    normalized = normalize_url(url)
    device_value = _coerce(Device, Device.DESKTOP if device is None else device, "device")
    quality_value = _coerce(Quality, Quality.MEDIUM if quality is None else quality, "quality")
    return CaptureRequest(
        url=normalized,
        device=device_value,
        quality=quality_value,
        request_id=request_id or new_request_id(),
    )


def _coerce(enum_cls, value: object, label: str):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    supported = ", ".join(member.value for member in enum_cls)
    raise InvalidInputError(f"Invalid {label} {value!r}; supported: {supported}")
