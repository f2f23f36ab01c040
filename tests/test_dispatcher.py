import json
from datetime import timedelta
from unittest.mock import MagicMock

from sqlmodel import Session, select

from app.dispatcher import MessageDispatcher
from database.models import DeviceHistory


def status_payload(**overrides):
    data = {"relayState": False, "wifiRSSI": -67, "uptime": 42, "freeHeap": 190000, "confirmationCode": "482913"}
    data.update(overrides)
    return json.dumps(data).encode()


def history_rows(engine):
    with Session(engine) as session:
        return session.exec(select(DeviceHistory)).all()


def test_status_updates_presence_and_registry(dispatcher, presence, registry, now):
    dispatcher.dispatch("solar/D1/status", status_payload(), now)

    record = presence.get("D1")
    assert record.online is True
    assert record.last_seen == now
    assert record.wifi_rssi == -67
    assert registry.matches("D1", "482913")


def test_status_without_code_keeps_previous_code(dispatcher, registry, now):
    dispatcher.dispatch("solar/D1/status", status_payload(), now)
    dispatcher.dispatch("solar/D1/status", json.dumps({"uptime": 52}).encode(), now)
    assert registry.lookup("D1") == "482913"


def test_unpaired_telemetry_is_not_persisted(dispatcher, presence, engine, now):
    for i in range(5):
        dispatcher.dispatch("solar/D1/status", status_payload(uptime=i), now)

    assert presence.get("D1").uptime == 4
    assert history_rows(engine) == []


def test_paired_telemetry_writes_one_row_per_message(dispatcher, store, registry, engine, now):
    registry.advertise("D1", "482913")
    store.pair(1, "D1", "482913")

    for i in range(3):
        dispatcher.dispatch("solar/D1/status", status_payload(uptime=i), now)

    rows = history_rows(engine)
    assert len(rows) == 3
    assert sorted(r.uptime for r in rows) == [0, 1, 2]
    assert all(r.wifi_rssi == -67 for r in rows)


def test_online_messages(dispatcher, presence, now):
    dispatcher.dispatch("solar/D1/status", status_payload(relayState=True), now)
    dispatcher.dispatch("solar/D1/online", b"false", now + timedelta(seconds=1))

    record = presence.get("D1")
    assert record.online is False
    assert record.relay_state is True


def test_malformed_messages_are_dropped(dispatcher, presence, now):
    dispatcher.dispatch("solar/D1/status", b"{broken", now)
    dispatcher.dispatch("solar/D1/online", b"perhaps", now)
    dispatcher.dispatch("garbage", b"{}", now)
    dispatcher.dispatch("solar/D1/command", b'{"command": "relay"}', now)

    assert presence.known_devices() == []

    dispatcher.dispatch("solar/D2/status", status_payload(), now)
    assert presence.get("D2").online is True


def test_sink_failures_are_swallowed(presence, registry, now):
    sink = MagicMock(side_effect=RuntimeError("disk full"))
    dispatcher = MessageDispatcher(presence, registry, history_sink=sink)

    dispatcher.dispatch("solar/D1/status", status_payload(), now)

    sink.assert_called_once()
    assert presence.get("D1").online is True
    assert registry.lookup("D1") == "482913"


def test_offline_after_timeout_and_back_on_next_status(dispatcher, presence, store, registry, now):
    dispatcher.dispatch("solar/D1/status", status_payload(), now)
    store.pair(7, "D1", "482913")

    presence.sweep(now + timedelta(seconds=31))
    assert store.get_devices_for(7)[0].status.online is False

    dispatcher.dispatch("solar/D1/status", status_payload(), now + timedelta(seconds=40))
    assert store.get_devices_for(7)[0].status.online is True
