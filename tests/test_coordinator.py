import logging
import threading
import time
import uuid
import webbrowser
from pathlib import Path

from conftest import settle

from reliquary.config import METADATA_FILE_NAME, SETTINGS_FILE_NAME, SaveSettings
from reliquary.coordinator import SaveCoordinator
from reliquary.errors import StorageError
from reliquary.events import SaveEvent
from reliquary.metadata import MetadataStore
from reliquary.storage import JsonFileStorage


def _collect_nothing(state):
    pass


def _classify(call):
    kind, name = call
    if name == SETTINGS_FILE_NAME:
        return "settings_save" if kind == "write" else "settings_load"
    if kind == "write":
        return "game_save"
    if kind == "read":
        return "game_load"
    return "game_delete"


def _dir_contents(directory: Path):
    return {p.name: p.read_bytes() for p in directory.iterdir()}


def test_rapid_saves_collapse_into_last(coordinator):
    coordinator.subscribe(SaveEvent.SAVING, _collect_nothing)
    # Worker cannot take anything while the test holds the lock
    with coordinator._lock:
        coordinator.request_game_save("first", custom_data=1)
        coordinator.request_game_save("second", custom_data=2)
        coordinator.request_game_save("third", custom_data=3)
        assert coordinator.is_busy
    settle(coordinator)

    records = coordinator.save_records
    assert len(records) == 1
    assert records[0].display_name == "third"
    assert records[0].custom_data == 3
    assert not records[0].is_auto_save
    assert not coordinator.is_busy


def test_rapid_loads_collapse_into_last(coordinator, storage):
    with coordinator._lock:
        coordinator.request_game_load("a")
        coordinator.request_game_load("b")
    settle(coordinator)
    assert storage.calls == [("read", "b" + coordinator.settings.file_extension)]


def test_operations_run_in_priority_order(coordinator, storage):
    coordinator.subscribe(SaveEvent.SAVING, _collect_nothing)
    with coordinator._lock:
        coordinator.request_game_delete("missing")
        coordinator.request_game_load("missing")
        coordinator.request_game_save("slot")
        coordinator.request_settings_load()
        coordinator.request_settings_save()
    settle(coordinator)

    order = []
    for call in storage.calls:
        step = _classify(call)
        if not order or order[-1] != step:
            order.append(step)
    assert order == ["settings_save", "settings_load", "game_save", "game_load", "game_delete"]


def test_save_clear_load_round_trip(coordinator):
    entity = uuid.uuid4()
    coordinator.subscribe(SaveEvent.SAVING, _collect_nothing)
    coordinator.set_save_data(entity, "x")
    coordinator.request_game_save("slot 1")
    settle(coordinator)

    record = coordinator.latest_record()
    assert record is not None
    assert coordinator.settings.save_file_path(record.save_name).exists()

    coordinator.clear_save_data()
    assert coordinator.get_save_data(entity) is None
    coordinator.request_game_load(record.save_name)
    settle(coordinator)

    assert coordinator.get_save_data(entity) == "x"
    assert coordinator.get_save_data(str(entity)) == "x"


def test_collectors_write_into_live_state(coordinator):
    entity = uuid.uuid4()

    def collect(state):
        state[entity] = "collected"

    coordinator.subscribe(SaveEvent.SAVING, collect)
    coordinator.request_game_save("slot")
    settle(coordinator)
    assert coordinator.get_save_data(entity) == "collected"

    data = coordinator.storage.read(
        coordinator.settings.save_file_path(coordinator.latest_record().save_name)
    )
    assert data == {str(entity): "collected"}


def test_failing_collector_does_not_abort_save(coordinator):
    def broken(state):
        raise RuntimeError("boom")

    coordinator.subscribe(SaveEvent.SAVING, broken)
    coordinator.subscribe(SaveEvent.SAVING, _collect_nothing)
    coordinator.request_game_save("slot")
    settle(coordinator)
    assert len(coordinator.save_records) == 1


def test_records_survive_restart(settings):
    with SaveCoordinator(settings) as first:
        first.subscribe(SaveEvent.SAVING, _collect_nothing)
        first.request_game_save("persisted", custom_data={"level": 3})
        settle(first)

    with SaveCoordinator(settings) as second:
        records = second.save_records
    assert [r.display_name for r in records] == ["persisted"]
    assert records[0].custom_data == {"level": 3}
    assert records[0].save_version == settings.savegame_version
    assert records[0].save_date.tzinfo is not None


def test_delete_removes_file_and_record(coordinator):
    coordinator.subscribe(SaveEvent.SAVING, _collect_nothing)
    coordinator.request_game_save("doomed")
    settle(coordinator)
    save_name = coordinator.latest_record().save_name

    coordinator.request_game_delete(save_name)
    settle(coordinator)

    assert coordinator.save_records == []
    assert not coordinator.settings.save_file_path(save_name).exists()
    stored = coordinator.storage.read(coordinator.settings.metadata_file)
    assert stored == []


def test_delete_unknown_save_changes_nothing_but_fires(coordinator):
    coordinator.subscribe(SaveEvent.SAVING, _collect_nothing)
    coordinator.request_game_save("keep")
    settle(coordinator)
    directory = coordinator.settings.savegame_directory
    before = _dir_contents(directory)

    fired = []
    coordinator.subscribe(SaveEvent.DELETED, lambda: fired.append("deleted"))
    coordinator.request_game_delete("does-not-exist")
    settle(coordinator)

    assert _dir_contents(directory) == before
    assert len(coordinator.save_records) == 1
    assert fired == ["deleted"]


def test_load_callbacks_run_once_before_listeners(coordinator):
    order = []
    coordinator.invoke_on_loaded(lambda: order.append("once"))
    coordinator.subscribe(SaveEvent.LOADED, lambda state: order.append("listener"))

    coordinator.request_game_load("nothing-here")
    settle(coordinator)
    coordinator.request_game_load("nothing-here")
    settle(coordinator)

    assert order == ["once", "listener", "listener"]


def test_completion_is_delivered_on_update(coordinator):
    fired = []
    coordinator.invoke_on_saved(lambda: fired.append("saved"))
    coordinator.subscribe(SaveEvent.SAVING, _collect_nothing)
    coordinator.request_game_save("slot")

    assert coordinator.wait_until_idle(timeout=5)
    assert fired == []
    coordinator.update(0)
    assert fired == ["saved"]


def test_save_without_collectors_writes_nothing_but_completes(coordinator, storage):
    fired = []
    coordinator.invoke_on_saved(lambda: fired.append("once"))
    coordinator.subscribe(SaveEvent.SAVED, lambda: fired.append("listener"))
    coordinator.request_game_save("empty")
    settle(coordinator)

    assert storage.calls == []
    assert coordinator.save_records == []
    assert fired == ["once", "listener"]


def test_loaded_listener_receives_new_state(coordinator):
    entity = uuid.uuid4()
    coordinator.subscribe(SaveEvent.SAVING, _collect_nothing)
    coordinator.set_save_data(entity, "payload")
    coordinator.request_game_save("slot")
    settle(coordinator)

    received = []
    coordinator.subscribe(SaveEvent.LOADED, lambda state: received.append(dict(state)))
    coordinator.clear_save_data()
    coordinator.request_game_load(coordinator.latest_record().save_name)
    settle(coordinator)
    assert received == [{entity: "payload"}]


def test_missing_save_loads_empty_state(coordinator):
    coordinator.set_save_data(uuid.uuid4(), "stale")
    coordinator.request_game_load("never-saved")
    settle(coordinator)
    assert coordinator.snapshot() == {}


def test_malformed_save_fails_load_and_worker_continues(coordinator, caplog):
    path = coordinator.settings.save_file_path("broken")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("{ this is not json", encoding="utf-8")

    fired = []
    coordinator.subscribe(SaveEvent.LOADED, lambda state: fired.append("loaded"))
    coordinator.subscribe(SaveEvent.DELETED, lambda: fired.append("deleted"))
    with caplog.at_level(logging.ERROR, logger="reliquary.coordinator"):
        with coordinator._lock:
            coordinator.request_game_load("broken")
            coordinator.request_game_delete("other")
        settle(coordinator)

    assert fired == ["deleted"]
    assert "GAME_LOAD operation failed" in caplog.text


def test_auto_save_fires_after_interval(tmp_path):
    settings = SaveSettings(save_directory=tmp_path, auto_save=True, auto_save_interval_minutes=1)
    with SaveCoordinator(settings) as coordinator:
        coordinator.subscribe(SaveEvent.SAVING, _collect_nothing)
        coordinator.start()
        assert coordinator.next_auto_save == 60.0

        coordinator.update(59.0)
        settle(coordinator)
        assert coordinator.save_records == []

        coordinator.update(2.0)
        settle(coordinator)
        records = coordinator.save_records
        assert len(records) == 1
        assert records[0].is_auto_save
        assert records[0].display_name == ""
        assert coordinator.next_auto_save == 121.0


def test_auto_save_can_be_disabled(coordinator):
    coordinator.subscribe(SaveEvent.SAVING, _collect_nothing)
    coordinator.set_auto_save_active(True)
    coordinator.set_auto_save_active(False)
    assert coordinator.next_auto_save is None
    coordinator.update(3600.0)
    settle(coordinator)
    assert coordinator.save_records == []


def test_concurrent_set_save_data_loses_nothing(coordinator):
    ids = [[uuid.uuid4() for _ in range(100)] for _ in range(8)]

    def writer(batch):
        for entity in batch:
            coordinator.set_save_data(entity, str(entity))

    threads = [threading.Thread(target=writer, args=(batch,)) for batch in ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    state = coordinator.snapshot()
    assert len(state) == 800
    assert all(state[e] == str(e) for batch in ids for e in batch)


def test_shutdown_waits_for_running_save_and_drops_pending(coordinator, storage):
    coordinator.subscribe(SaveEvent.SAVING, _collect_nothing)
    storage.gate.clear()
    coordinator.request_game_save("in flight")
    assert storage.write_started.wait(5)
    coordinator.request_game_load("pending")

    stopper = threading.Thread(target=coordinator.shutdown)
    stopper.start()
    deadline = time.monotonic() + 5
    while not coordinator.closed and time.monotonic() < deadline:
        time.sleep(0.01)
    assert coordinator.closed
    assert stopper.is_alive()

    storage.gate.set()
    stopper.join(5)
    assert not stopper.is_alive()

    assert len(coordinator.save_records) == 1
    assert ("read", "pending" + coordinator.settings.file_extension) not in storage.calls
    assert not coordinator.is_busy


def test_requests_after_shutdown_are_ignored(coordinator, caplog):
    coordinator.shutdown()
    with caplog.at_level(logging.WARNING, logger="reliquary.coordinator"):
        coordinator.request_game_save("late")
    assert not coordinator.is_busy
    assert "shut down" in caplog.text


def test_metadata_file_lives_next_to_saves(coordinator):
    coordinator.subscribe(SaveEvent.SAVING, _collect_nothing)
    coordinator.request_game_save("slot")
    settle(coordinator)
    directory = coordinator.settings.savegame_directory
    names = {p.name for p in directory.iterdir()}
    assert METADATA_FILE_NAME in names
    assert coordinator.latest_record().save_name + ".save" in names
    assert not any(name.endswith(".tmp") for name in names)


def test_get_missing_entry_warns(coordinator, caplog):
    with caplog.at_level(logging.WARNING, logger="reliquary.coordinator"):
        assert coordinator.get_save_data(uuid.uuid4()) is None
    assert "no entry" in caplog.text


def test_slow_collector_does_not_block_foreground(coordinator):
    collecting = threading.Event()
    release = threading.Event()

    def slow(state):
        collecting.set()
        release.wait(5)

    coordinator.subscribe(SaveEvent.SAVING, slow)
    coordinator.request_game_save("slow")
    assert collecting.wait(5)

    begin = time.monotonic()
    coordinator.set_save_data(uuid.uuid4(), "staged")
    coordinator.get_save_data(uuid.uuid4())
    coordinator.request_game_load("later")
    elapsed = time.monotonic() - begin
    release.set()
    settle(coordinator)

    assert elapsed < 1.0
    assert len(coordinator.save_records) == 1


class _DataWriteFails(JsonFileStorage):
    def write(self, path, value):
        if Path(path).suffix == ".save":
            raise StorageError(f"disk full: {path}")
        super().write(path, value)


def test_failed_data_write_leaves_no_record_on_disk(settings):
    fired = []
    with SaveCoordinator(settings, storage=_DataWriteFails()) as coordinator:
        coordinator.subscribe(SaveEvent.SAVING, _collect_nothing)
        coordinator.subscribe(SaveEvent.SAVED, lambda: fired.append("saved"))
        coordinator.request_game_save("doomed")
        settle(coordinator)
        assert coordinator.save_records == []

    assert fired == []
    assert MetadataStore(settings.metadata_file).load() == []
    with SaveCoordinator(settings) as again:
        assert again.save_records == []


def test_get_save_data_with_malformed_id_returns_none(coordinator, caplog):
    with caplog.at_level(logging.WARNING, logger="reliquary.coordinator"):
        assert coordinator.get_save_data("player-1") is None
    assert "not a valid entry id" in caplog.text


def test_open_save_directory_creates_and_opens_it(coordinator, monkeypatch):
    opened = []
    monkeypatch.setattr(webbrowser, "open", lambda url: opened.append(url))

    directory = coordinator.open_save_directory()

    assert directory.is_dir()
    assert directory == coordinator.settings.savegame_directory
    assert opened == [directory.resolve().as_uri()]
    assert opened[0].startswith("file://")
