import json
from unittest.mock import patch

import pytest

from pageshot_agent.errors import PersistenceWarning
from pageshot_agent.models import Cookie, SessionState
from pageshot_agent.session_store import FileSessionStore

BROWSER_COOKIE = {
    "name": "sessionid",
    "value": "abc123",
    "domain": ".instagram.com",
    "path": "/",
    "expires": 1893456000.0,
    "httpOnly": True,
    "secure": True,
    "sameSite": "Lax",
}


def test_missing_session_is_not_an_error(tmp_path):
    store = FileSessionStore(tmp_path / "does-not-exist-yet")
    assert store.load("instagram") is None


def test_saved_jar_is_loaded_back(tmp_path):
    store = FileSessionStore(tmp_path)
    store.save("instagram", SessionState.from_browser([BROWSER_COOKIE]))

    state = store.load("instagram")
    assert state is not None
    assert state.cookies[0].name == "sessionid"
    assert state.cookies[0].http_only is True
    assert state.cookies[0].same_site == "Lax"


def test_file_uses_browser_field_names(tmp_path):
    store = FileSessionStore(tmp_path)
    store.save("instagram", SessionState.from_browser([BROWSER_COOKIE]))

    on_disk = json.loads(store.path_for("instagram").read_text())
    assert on_disk == [BROWSER_COOKIE]
    # no temp files left behind
    assert [p.name for p in tmp_path.iterdir()] == ["instagram_cookies.json"]


def test_empty_or_corrupt_files_read_as_no_session(tmp_path):
    store = FileSessionStore(tmp_path)
    store.path_for("instagram").write_text("[]")
    assert store.load("instagram") is None

    store.path_for("instagram").write_text("{not json")
    assert store.load("instagram") is None

    store.path_for("instagram").write_text('{"name": "x"}')
    assert store.load("instagram") is None


def test_last_writer_wins(tmp_path):
    store = FileSessionStore(tmp_path)
    store.save("instagram", SessionState(cookies=[Cookie(name="a", value="1", domain="x")]))
    store.save("instagram", SessionState(cookies=[Cookie(name="b", value="2", domain="x")]))
    assert [c.name for c in store.load("instagram").cookies] == ["b"]


def test_keys_are_sanitized_into_file_names(tmp_path):
    store = FileSessionStore(tmp_path)
    assert store.path_for("../../etc/passwd").parent == tmp_path


def test_write_failure_raises_persistence_warning(tmp_path):
    store = FileSessionStore(tmp_path)
    with patch("pageshot_agent.session_store.os.replace", side_effect=OSError("read-only file system")):
        with pytest.raises(PersistenceWarning) as excinfo:
            store.save("instagram", SessionState.from_browser([BROWSER_COOKIE]))

    assert excinfo.value.fatal is False
    assert "read-only" in excinfo.value.message
    assert list(tmp_path.iterdir()) == []
