from __future__ import annotations

import pytest

from websnap.errors import InvalidInputError
from websnap.request import (
    DEVICE_PROFILES,
    Device,
    Quality,
    build_capture_request,
)


def test_build_capture_request_applies_defaults() -> None:
    request = build_capture_request("example.com")
    assert request.url == "https://example.com/"
    assert request.device is Device.DESKTOP
    assert request.quality is Quality.MEDIUM
    assert request.device_profile.width == 1440
    assert request.jpeg_quality == 80
    assert len(request.request_id) == 12


def test_build_capture_request_accepts_case_insensitive_values() -> None:
    request = build_capture_request("https://example.com", " Mobile ", "HIGH", request_id="req-1")
    assert request.device is Device.MOBILE
    assert request.quality is Quality.HIGH
    assert request.jpeg_quality == 95
    assert request.request_id == "req-1"
    assert request.device_profile.is_mobile
    assert request.device_profile.has_touch


def test_build_capture_request_treats_none_as_default() -> None:
    request = build_capture_request("example.com", None, None)
    assert request.device is Device.DESKTOP
    assert request.quality is Quality.MEDIUM


@pytest.mark.parametrize(("device", "quality"), [("watch", "medium"), ("desktop", "ultra"), (3, "low")])
def test_build_capture_request_rejects_unknown_enums(device: object, quality: object) -> None:
    with pytest.raises(InvalidInputError) as excinfo:
        build_capture_request("example.com", device, quality)
    assert "supported" in str(excinfo.value)


def test_device_profiles_are_fixed() -> None:
    sizes = {device: (profile.width, profile.height) for device, profile in DEVICE_PROFILES.items()}
    assert sizes == {
        Device.DESKTOP: (1440, 900),
        Device.TABLET: (768, 1024),
        Device.MOBILE: (375, 812),
    }
