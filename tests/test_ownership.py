import threading
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from app.codec import StatusMessage
from app.errors import AlreadyLinked, DeviceExists, Forbidden, InvalidCode, NotFound, StorageUnavailable
from database.models import Device, DeviceHistory, User, UserDevice

U1, U2, U3 = 1001, 1002, 1003


def count(engine, model, *where):
    with Session(engine) as session:
        statement = select(model)
        for clause in where:
            statement = statement.where(clause)
        return len(session.exec(statement).all())


def test_pair_rejects_wrong_or_missing_code(store, registry, engine):
    with pytest.raises(InvalidCode):
        store.pair(U1, "D1", "482913")

    registry.advertise("D1", "482913")
    with pytest.raises(InvalidCode):
        store.pair(U1, "D1", "482910")

    assert count(engine, Device) == 0
    assert count(engine, User) == 0


def test_example_pairing_flow(store, registry, engine):
    registry.advertise("D1", "482913")

    with pytest.raises(InvalidCode):
        store.pair(U1, "D1", "482910")

    first = store.pair(U1, "D1", "482913")
    assert first.device_id == "D1"
    assert first.is_owner is True
    assert first.name == "Solar Controller D1"

    second = store.pair(U2, "D1", "482913")
    assert second.is_owner is False

    with pytest.raises(Forbidden):
        store.share(U2, "D1", U3)

    assert count(engine, Device) == 1
    assert count(engine, UserDevice) == 2


def test_pair_uses_desired_name(store, registry):
    registry.advertise("ABCDEF123456", "1")
    device = store.pair(U1, "ABCDEF123456", "1", name="Garage")
    assert device.name == "Garage"


def test_pair_twice_is_already_linked(store, registry, engine):
    registry.advertise("D1", "1")
    store.pair(U1, "D1", "1")

    with pytest.raises(AlreadyLinked):
        store.pair(U1, "D1", "1")
    assert count(engine, UserDevice) == 1


def test_failed_pair_leaves_no_rows(store, registry, engine, now):
    registry.advertise("D1", "1")
    store.pair(U1, "D1", "1")
    with pytest.raises(AlreadyLinked):
        store.pair(U1, "D1", "1")

    # fail at the edge insert, after the user and device rows were flushed
    registry.advertise("D2", "2")
    calls = []

    def failing_clock():
        calls.append(1)
        if len(calls) == 3:
            raise RuntimeError("clock failure")
        return now

    store._clock = failing_clock
    with pytest.raises(RuntimeError):
        store.pair(U2, "D2", "2")
    assert count(engine, User, User.telegram_id == U2) == 0
    assert count(engine, Device, Device.device_id == "D2") == 0


def test_share_grants_non_owner_access(store, registry):
    registry.advertise("D1", "1")
    store.pair(U1, "D1", "1")

    store.share(U1, "D1", U2)

    devices = store.get_devices_for(U2)
    assert [d.device_id for d in devices] == ["D1"]
    assert devices[0].is_owner is False

    with pytest.raises(AlreadyLinked):
        store.share(U1, "D1", U2)
    with pytest.raises(Forbidden):
        store.share(U2, "D1", U3)
    with pytest.raises(Forbidden):
        store.share(U3, "D1", U2)
    with pytest.raises(NotFound):
        store.share(U1, "missing", U2)


def test_unpair_last_edge_deletes_device_and_allows_fresh_claim(store, registry, dispatcher, engine):
    registry.advertise("D1", "1")
    store.pair(U1, "D1", "1")
    dispatcher.dispatch("solar/D1/status", b'{"relayState": true, "uptime": 1}')
    assert count(engine, DeviceHistory) == 1

    store.unpair(U1, "D1")

    assert count(engine, Device) == 0
    assert count(engine, DeviceHistory) == 0
    assert store.get_devices_for(U1) == []

    registry.advertise("D1", "777777")
    with pytest.raises(InvalidCode):
        store.pair(U2, "D1", "1")
    again = store.pair(U2, "D1", "777777")
    assert again.is_owner is True


def test_unpair_keeps_device_while_others_remain(store, registry, engine):
    registry.advertise("D1", "1")
    store.pair(U1, "D1", "1")
    store.share(U1, "D1", U2)

    store.unpair(U1, "D1")

    assert count(engine, Device) == 1
    assert [d.device_id for d in store.get_devices_for(U2)] == ["D1"]
    assert store.get_devices_for(U1) == []


def test_unpair_not_found(store, registry):
    with pytest.raises(NotFound):
        store.unpair(U1, "D1")

    registry.advertise("D1", "1")
    store.pair(U1, "D1", "1")
    store.ensure_user(U2)
    with pytest.raises(NotFound):
        store.unpair(U2, "D1")


def test_get_devices_for_includes_presence(store, registry, presence, now):
    registry.advertise("D1", "1")
    registry.advertise("D2", "2")
    store.pair(U1, "D1", "1")
    store.pair(U1, "D2", "2")
    presence.record_status("D1", {"relay_state": True, "wifi_rssi": -40}, now)

    devices = {d.device_id: d for d in store.get_devices_for(U1)}

    assert devices["D1"].status.online is True
    assert devices["D1"].status.relay_state is True
    assert devices["D2"].status.online is False


def test_get_devices_for_unknown_user_is_empty(store):
    assert store.get_devices_for(999) == []


def test_never_paired_devices_are_never_listed(store, registry, dispatcher):
    store.ensure_user(U1)
    for i in range(20):
        dispatcher.dispatch("solar/GHOST/status", f'{{"uptime": {i}, "confirmationCode": "5"}}')
    assert store.get_devices_for(U1) == []


def test_ensure_user_is_idempotent_and_fills_username(store, engine):
    first = store.ensure_user(U1)
    second = store.ensure_user(U1, "alice")
    assert first.id == second.id
    assert second.username == "alice"
    assert count(engine, User) == 1


def test_record_history_only_for_paired_devices(store, registry, engine):
    status = StatusMessage(device_id="D1", relay_state=True, wifi_rssi=-70, uptime=5, free_heap=100)
    assert store.record_history("D1", status) is False
    assert count(engine, DeviceHistory) == 0

    registry.advertise("D1", "1")
    store.pair(U1, "D1", "1")
    assert store.record_history("D1", status) is True
    assert count(engine, DeviceHistory) == 1


def test_history_for_and_prune(store, registry, now):
    registry.advertise("D1", "1")
    store.pair(U1, "D1", "1")
    status = StatusMessage(device_id="D1", uptime=1)

    for age in (timedelta(days=40), timedelta(days=2), timedelta(minutes=10)):
        store._clock = lambda age=age: now - age
        store.record_history("D1", status)
    store._clock = lambda: now

    assert len(store.history_for("D1", "1h")) == 1
    assert len(store.history_for("D1", "7d")) == 2
    assert len(store.history_for("D1", "bogus")) == 1

    assert store.prune_history(retention_days=30) == 1
    assert len(store.history_for("D1", "30d")) == 2


def test_storage_errors_surface_as_retryable(store, monkeypatch):
    def unavailable(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(type(store), "_get_user", staticmethod(unavailable))
    with pytest.raises(StorageUnavailable) as excinfo:
        store.get_devices_for(U1)
    assert excinfo.value.retryable is True


def _race(store, callers, device_id, code):
    results, errors = [], []
    barrier = threading.Barrier(len(callers))

    def claim(user):
        barrier.wait()
        try:
            results.append(store.pair(user, device_id, code))
        except (AlreadyLinked, StorageUnavailable) as e:
            errors.append(e)

    threads = [threading.Thread(target=claim, args=(user,)) for user in callers]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


def test_concurrent_first_claims_create_one_device(store, registry, engine):
    registry.advertise("NEW", "1")
    results, errors = _race(store, [U1 + i for i in range(8)], "NEW", "1")

    assert len(results) + len(errors) == 8
    assert count(engine, Device) == 1
    assert sum(1 for r in results if r.is_owner) == 1
    assert count(engine, UserDevice, UserDevice.is_owner == True) == 1  # noqa: E712
    assert count(engine, UserDevice) == len(results)


def test_concurrent_claims_by_same_user_link_once(store, registry, engine):
    registry.advertise("NEW", "1")
    results, errors = _race(store, [U1] * 6, "NEW", "1")

    assert len(results) == 1
    assert results[0].is_owner is True
    assert all(isinstance(e, (AlreadyLinked, DeviceExists, StorageUnavailable)) for e in errors)
    assert count(engine, Device) == 1
    assert count(engine, UserDevice) == 1


def test_pair_timestamps_are_timezone_aware_and_persisted(store, registry, dispatcher, engine):
    registry.advertise("D1", "1")
    paired = store.pair(U1, "D1", "1")

    assert paired.added_at.tzinfo is not None
    assert paired.created_at.tzinfo is not None

    listed = store.get_devices_for(U1)[0]
    assert listed.added_at.replace(tzinfo=None) == paired.added_at.replace(tzinfo=None)

    dispatcher.dispatch("solar/D1/status", b'{"uptime": 3}')
    assert count(engine, DeviceHistory) == 1
    assert len(store.history_for("D1", "1h")) == 1
