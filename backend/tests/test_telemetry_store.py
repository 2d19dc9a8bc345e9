import asyncio
from datetime import datetime, timedelta

import pytest

from locationcheck.errors import DeviceNotFound, SettingsNotFound, StorageFailure, ValidationError, WorkerPoolTimeout
from locationcheck.models import Device, DeviceInfo, DeviceLocation

from .conftest import count_rows
from .test_device_registry import register

T0 = datetime(2024, 12, 8, 9, 0, 0)


async def record(services, location_id, latitude=37.0, longitude=-122.0, minutes=0, **meta):
    return await services.store.record_telemetry(
        device_id="d1",
        location_id=location_id,
        coords={"latitude": latitude, "longitude": longitude, "altitude": 12.5, "accuracy": 5.0},
        meta=meta,
        timestamp=T0 + timedelta(minutes=minutes),
    )


async def test_unregistered_device_is_rejected(services):
    with pytest.raises(DeviceNotFound):
        await services.store.record_telemetry(
            device_id="ghost",
            location_id="L1",
            coords={"latitude": 1.0, "longitude": 2.0},
            meta={"battery_level": 0.5},
        )
    assert await count_rows(services, DeviceLocation, device_id="ghost") == 0
    assert await count_rows(services, DeviceInfo, device_id="ghost") == 0


@pytest.mark.parametrize("coords, missing", [
    ({"longitude": 2.0}, ["latitude"]),
    ({"latitude": 1.0}, ["longitude"]),
    ({}, ["latitude", "longitude"]),
])
async def test_missing_coordinates(services, coords, missing):
    await register(services)
    with pytest.raises(ValidationError) as exc:
        await services.store.record_telemetry("d1", "L1", coords)
    assert exc.value.missing == missing
    assert await count_rows(services, DeviceLocation) == 0


async def test_missing_location_id(services):
    await register(services)
    with pytest.raises(ValidationError) as exc:
        await services.store.record_telemetry("d1", None, {"latitude": 1.0, "longitude": 2.0})
    assert exc.value.missing == ["id"]


async def test_out_of_range_latitude(services):
    await register(services)
    with pytest.raises(ValidationError):
        await services.store.record_telemetry("d1", "L1", {"latitude": 91.0, "longitude": 2.0})


async def test_record_updates_last_seen_and_info(services):
    await register(services)
    ack = await record(services, "L1", battery_level=0.8)

    assert ack.location_id == "L1"
    assert ack.location["latitude"] == 37.0
    device = await services.registry.get_device("d1")
    assert device["lastSeenAt"] == T0.isoformat()
    assert device["batteryLevel"] == 0.8
    assert device["deviceModel"] == "iPhone15,2"


async def test_coordinates_are_encrypted_at_rest(services):
    await register(services)
    await record(services, "L1")
    async with services.session_factory() as session:
        row = await session.get(DeviceLocation, "L1")
    assert row.latitude != "37.0"
    assert row.latitude != row.longitude
    assert services.cipher.cipher.decrypt_value(row.latitude) == "37.0"


async def test_zero_coordinate_is_stored(services):
    await register(services)
    await record(services, "L1", latitude=0.0, longitude=0.0)
    [location] = await services.store.list_locations("d1")
    assert location["latitude"] == 0.0
    assert location["longitude"] == 0.0


async def test_list_locations_newest_first_with_paging(services):
    await register(services)
    for minute in range(5):
        await record(services, f"L{minute}", latitude=10.0 + minute, minutes=minute)

    page = await services.store.list_locations("d1", limit=2)
    assert [location["id"] for location in page] == ["L4", "L3"]
    assert page[0]["latitude"] == 14.0
    assert page[0]["altitude"] == 12.5

    rest = await services.store.list_locations("d1", limit=10, offset=2)
    assert [location["id"] for location in rest] == ["L2", "L1", "L0"]


async def test_failed_location_insert_discards_info_update(services):
    await register(services)
    await record(services, "L1", battery_level=0.5)

    # Same location id violates the primary key
    with pytest.raises(StorageFailure):
        await record(services, "L1", minutes=1, battery_level=0.9)

    device = await services.registry.get_device("d1")
    assert device["batteryLevel"] == 0.5
    assert device["lastSeenAt"] == T0.isoformat()
    assert await count_rows(services, DeviceLocation) == 1


async def test_corrupt_field_does_not_abort_listing(services):
    await register(services)
    await record(services, "L1", minutes=0)
    await record(services, "L2", minutes=1)

    async with services.session_factory() as session:
        async with session.begin():
            row = await session.get(DeviceLocation, "L2")
            row.latitude = '{"encrypted": "00", "iv": "00", "salt": "00", "tag": "00"}'

    locations = await services.store.list_locations("d1")
    assert [location["id"] for location in locations] == ["L2", "L1"]
    assert locations[0]["latitude"] is None
    assert locations[0]["longitude"] == -122.0
    assert locations[1]["latitude"] == 37.0


async def test_settings_update_and_read(services):
    await register(services)
    view = await services.store.update_settings("d1", {
        "data_send_interval": 120,
        "power_save_mode": True,
        "notification_enabled": None,
    })
    assert view["dataSendInterval"] == 120
    assert view["powerSaveMode"] is True
    assert view["notificationEnabled"] is True
    assert await services.store.get_settings("d1") == view


async def test_settings_interval_bounds(services):
    await register(services)
    with pytest.raises(ValidationError):
        await services.store.update_settings("d1", {"data_send_interval": 1})


async def test_settings_not_found(services):
    with pytest.raises(SettingsNotFound):
        await services.store.get_settings("ghost")
    with pytest.raises(SettingsNotFound):
        await services.store.update_settings("ghost", {"power_save_mode": True})


async def last_seen(services, device_id="d1"):
    async with services.session_factory() as session:
        return (await session.get(Device, device_id)).last_seen_at


async def test_location_and_info_encrypt_in_one_batch(services, monkeypatch):
    await register(services)
    batches = []
    encrypt_many = services.cipher.encrypt_many

    async def tracked(values):
        batches.append(sorted(values))
        return await encrypt_many(values)

    monkeypatch.setattr(services.cipher, "encrypt_many", tracked)
    await record(services, "L1", battery_level=0.8)
    assert batches == [["accuracy", "altitude", "battery_level", "latitude", "longitude"]]


async def test_encryption_timeout_writes_nothing(services):
    await register(services)
    services.cipher.timeout = 0
    with pytest.raises(WorkerPoolTimeout):
        await record(services, "L1")
    assert await count_rows(services, DeviceLocation, device_id="d1") == 0


async def test_writes_for_one_device_do_not_overlap(services, monkeypatch):
    await register(services)
    active = peak = 0
    write = services.store._write_telemetry

    async def tracked(*args):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        try:
            await asyncio.sleep(0.02)
            return await write(*args)
        finally:
            active -= 1

    monkeypatch.setattr(services.store, "_write_telemetry", tracked)
    await asyncio.gather(*[record(services, f"L{n}", minutes=n) for n in range(5)])

    assert peak == 1
    assert await count_rows(services, DeviceLocation, device_id="d1") == 5


async def test_settings_update_refreshes_last_seen(services):
    await register(services)
    await record(services, "L1")
    assert await last_seen(services) == T0

    await services.store.update_settings("d1", {"power_save_mode": True})
    assert await last_seen(services) > T0


async def test_notification_refreshes_last_seen(services):
    await register(services)
    await record(services, "L1")

    await services.notifications.record_and_build_payload("d1")
    assert await last_seen(services) > T0


async def test_list_locations_clamps_paging(services):
    await register(services)
    await record(services, "L1")
    assert [entry["id"] for entry in await services.store.list_locations("d1", limit=1000, offset=-3)] == ["L1"]
    assert [entry["id"] for entry in await services.store.list_locations("d1", limit=0)] == ["L1"]
