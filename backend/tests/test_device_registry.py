import json

import pytest

from locationcheck.errors import CredentialInvalid, DeviceNotFound, StorageFailure, ValidationError
from locationcheck.models import AuthCredential, Device, DeviceInfo, DeviceSettings

from .conftest import count_rows


async def register(services, device_id="d1", **overrides):
    fields = dict(
        model="iPhone15,2",
        name="Test Phone",
        os_version="17.2",
        screen_resolution="1179x2556",
        app_version="1.0.3",
    )
    fields.update(overrides)
    return await services.registry.register(device_id, **fields)


async def test_register_creates_all_rows(services):
    token = await register(services)

    assert await services.registry.authenticate(token) == "d1"
    for model in (Device, DeviceInfo, DeviceSettings, AuthCredential):
        assert await count_rows(services, model, device_id="d1") == 1


async def test_register_seeds_default_settings(services):
    await register(services)
    settings = await services.store.get_settings("d1")
    assert settings["dataSendInterval"] == 60
    assert settings["notificationEnabled"] is True
    assert settings["powerSaveMode"] is False


async def test_info_is_stored_encrypted(services):
    await register(services)
    async with services.session_factory() as session:
        info = await session.get(DeviceInfo, "d1")
    assert info.model != "iPhone15,2"
    assert set(json.loads(info.model)) == {"encrypted", "iv", "salt", "tag"}
    assert info.name != info.os_version

    device = await services.registry.get_device("d1")
    assert device["deviceModel"] == "iPhone15,2"
    assert device["deviceName"] == "Test Phone"
    assert device["osVersion"] == "17.2"
    assert device["batteryLevel"] is None


async def test_reregistration_rotates_credential(services):
    first = await register(services)
    second = await register(services, name="Renamed Phone")

    assert first != second
    for model in (Device, DeviceInfo, DeviceSettings, AuthCredential):
        assert await count_rows(services, model, device_id="d1") == 1

    assert await services.registry.authenticate(second) == "d1"
    with pytest.raises(CredentialInvalid):
        await services.registry.authenticate(first)

    device = await services.registry.get_device("d1")
    assert device["deviceName"] == "Renamed Phone"


async def test_reregistration_keeps_existing_settings(services):
    await register(services)
    await services.store.update_settings("d1", {"data_send_interval": 300})
    await register(services)
    assert (await services.store.get_settings("d1"))["dataSendInterval"] == 300


@pytest.mark.parametrize("missing", ["model", "name", "os_version"])
async def test_missing_required_field_writes_nothing(services, missing):
    with pytest.raises(ValidationError):
        await register(services, **{missing: None})
    assert await count_rows(services, Device) == 0


async def test_missing_device_id(services):
    with pytest.raises(ValidationError) as exc:
        await register(services, device_id="  ")
    assert exc.value.missing == ["deviceId"]


async def test_failed_credential_write_rolls_back_device(services, monkeypatch):
    # token column is NOT NULL, so the last write of the batch fails
    monkeypatch.setattr(services.registry.credentials, "issue", lambda device_id: None)

    with pytest.raises(StorageFailure):
        await register(services)

    for model in (Device, DeviceInfo, DeviceSettings, AuthCredential):
        assert await count_rows(services, model) == 0


async def test_get_unknown_device(services):
    with pytest.raises(DeviceNotFound):
        await services.registry.get_device("nope")
