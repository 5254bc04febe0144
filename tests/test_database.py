from sqlalchemy import inspect

from facefind.database import PhotoModel, PhotoStore, SettingModel, SettingsStore, init_db, make_engine
from facefind.domain import CandidatePhoto


def test_setting_round_trip(session_factory):
    store = SettingsStore(session_factory)
    value = {"provider": "remote", "remoteEndpoint": "https://api.example.com", "remoteKey": "k"}

    store.save_setting("facefind_ai_config", value)

    assert store.get_setting("facefind_ai_config") == value


def test_setting_overwrite(session_factory):
    store = SettingsStore(session_factory)
    store.save_setting("facefind_ai_config", {"provider": "remote"})
    store.save_setting("facefind_ai_config", {"provider": "local"})
    assert store.get_setting("facefind_ai_config") == {"provider": "local"}


def test_missing_setting(session_factory):
    assert SettingsStore(session_factory).get_setting("nope") is None


def test_non_json_setting_returned_raw(session_factory):
    with session_factory() as db:
        db.add(SettingModel(key="legacy", value="browser"))
        db.commit()

    assert SettingsStore(session_factory).get_setting("legacy") == "browser"


def test_list_candidates_for_event(session_factory):
    with session_factory() as db:
        db.add_all([
            PhotoModel(id="b", event_id="wedding", src="https://cdn/b.jpg", created_at=2),
            PhotoModel(id="a", event_id="wedding", src="https://cdn/a.jpg", created_at=1),
            PhotoModel(id="c", event_id="party", src="https://cdn/c.jpg", created_at=0),
        ])
        db.commit()

    store = PhotoStore(session_factory)

    assert store.list_candidates("wedding") == [
        CandidatePhoto("a", "https://cdn/a.jpg"),
        CandidatePhoto("b", "https://cdn/b.jpg"),
    ]
    assert store.list_candidates("unknown") == []


def test_sqlite_file_directory_created_on_demand(tmp_path):
    db_path = tmp_path / "elsewhere" / "nested" / "gallery.db"

    engine = make_engine(f"sqlite:///{db_path}")
    init_db(engine)

    assert db_path.parent.is_dir()
    assert "settings" in inspect(engine).get_table_names()
    engine.dispose()


def test_in_memory_sqlite_needs_no_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    engine = make_engine("sqlite:///:memory:")
    init_db(engine)
    assert list(tmp_path.iterdir()) == []
    engine.dispose()
