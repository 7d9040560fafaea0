import json

import pytest

from t2cal.config import CalendarSettings
from t2cal.errors import PersistenceFailure
from t2cal.state import MappingStore, State


def test_load_without_blob_uses_defaults(tmp_path) -> None:
    with State(str(tmp_path / "state.sqlite")) as st:
        store = MappingStore.load(st)
        assert store.config == CalendarSettings()
        assert list(store.all()) == []


def test_load_corrupt_blob_uses_defaults(tmp_path) -> None:
    with State(str(tmp_path / "state.sqlite")) as st:
        st.save_blob("{not json")
        store = MappingStore.load(st)
        assert store.config.enabled is False
        assert len(store) == 0


def test_load_wrong_shape_uses_defaults(tmp_path) -> None:
    with State(str(tmp_path / "state.sqlite")) as st:
        st.save_blob(json.dumps({"config": {"enabled": "maybe"}, "mapping": []}))
        store = MappingStore.load(st)
        assert store.config == CalendarSettings()
        assert len(store) == 0


def test_mapping_and_config_persist_together(tmp_path) -> None:
    db = str(tmp_path / "state.sqlite")
    settings = CalendarSettings(
        enabled=True, calendar_url="https://dav.example.com/cal", username="u", password="p"
    )
    with State(db) as st:
        store = MappingStore.load(st)
        store.replace_config(settings)
        store.put("t1", "sp-task-t1")
        store.put("t2", "sp-task-t2")
        assert store.remove("t2") is True
        assert store.remove("t2") is False

    with State(db) as st:
        raw = json.loads(st.load_blob() or "{}")
        assert set(raw) == {"config", "mapping"}
        assert raw["mapping"] == {"t1": "sp-task-t1"}

        reloaded = MappingStore.load(st)
        assert reloaded.get("t1") == "sp-task-t1"
        assert reloaded.get("t2") is None
        assert reloaded.config.calendar_url == "https://dav.example.com/cal/"
        assert reloaded.config.enabled is True


def test_failed_persist_rolls_back_memory(tmp_path, monkeypatch) -> None:
    with State(str(tmp_path / "state.sqlite")) as st:
        store = MappingStore.load(st)
        store.put("t1", "sp-task-t1")

        def _boom(payload: str) -> None:
            raise PersistenceFailure("disk full")

        monkeypatch.setattr(st, "save_blob", _boom)

        with pytest.raises(PersistenceFailure):
            store.put("t2", "sp-task-t2")
        with pytest.raises(PersistenceFailure):
            store.remove("t1")
        with pytest.raises(PersistenceFailure):
            store.replace_config(CalendarSettings(enabled=True))

        assert dict(store.all()) == {"t1": "sp-task-t1"}
        assert store.config.enabled is False


def test_save_after_close_is_persistence_failure(tmp_path) -> None:
    st = State(str(tmp_path / "state.sqlite"))
    st.close()
    with pytest.raises(PersistenceFailure):
        st.save_blob("{}")


def test_reset_and_clear_mapping(tmp_path) -> None:
    with State(str(tmp_path / "state.sqlite")) as st:
        store = MappingStore.load(st)
        store.replace_config(CalendarSettings(enabled=True, delete_completed_tasks=True))
        store.put("t1", "sp-task-t1")

        store.clear_mapping()
        assert len(store) == 0
        assert store.config.delete_completed_tasks is True

        store.put("t1", "sp-task-t1")
        store.reset()
        assert len(store) == 0
        assert store.config == CalendarSettings()
        assert MappingStore.load(st).config == CalendarSettings()


def test_all_is_a_snapshot(tmp_path) -> None:
    with State(str(tmp_path / "state.sqlite")) as st:
        store = MappingStore.load(st)
        store.put("t1", "sp-task-t1")
        store.put("t2", "sp-task-t2")
        for task_id, _ in store.all():
            store.remove(task_id)
        assert len(store) == 0
