from __future__ import annotations

import json

import pytest
import requests

from resurev.backends import FileKV, HttpKV, MemoryKV, get_backend
from resurev.config import Settings
from resurev.errors import BackendUnavailable


# ── FileKV ───────────────────────────────────────────────────────────────


def test_file_kv_round_trip_and_sharing(tmp_path):
    path = tmp_path / "data" / "kv.json"
    one, two = FileKV(path), FileKV(path)
    assert one.ping()
    assert one.set("resume:a", "1")
    assert one.set("resume:b", "2")
    assert one.set("tombstone:a", "t")

    assert two.get("resume:a") == "1"
    assert two.list("resume:") == ["resume:a", "resume:b"]
    assert two.list("resume:", with_values=True) == [("resume:a", "1"), ("resume:b", "2")]

    assert two.delete("resume:a")
    assert two.delete("resume:missing")
    assert one.get("resume:a") is None


def test_file_kv_treats_corrupt_file_as_empty(tmp_path):
    path = tmp_path / "kv.json"
    path.write_text("{oops", encoding="utf-8")
    kv = FileKV(path)
    assert kv.get("x") is None
    assert kv.set("x", "1")
    assert json.loads(path.read_text(encoding="utf-8")) == {"x": "1"}


# ── HttpKV ───────────────────────────────────────────────────────────────


class FakeResponse:
    def __init__(self, status_code: int = 200, data=None) -> None:
        self.status_code = status_code
        self._data = data if data is not None else {}

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if isinstance(self._data, Exception):
            raise self._data
        return self._data


class FakeSession:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, str, dict]] = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def test_http_get_and_missing():
    session = FakeSession(FakeResponse(200, {"value": "v"}), FakeResponse(404))
    kv = HttpKV("https://kv.example/", session=session)
    assert kv.get("resume:a b") == "v"
    assert kv.get("resume:zzz") is None
    assert session.calls[0][1] == "https://kv.example/kv/resume%3Aa%20b"
    assert session.calls[0][2]["timeout"] == 10.0


def test_http_set_delete_and_list():
    session = FakeSession(
        FakeResponse(204),
        FakeResponse(500),
        FakeResponse(404),
        FakeResponse(200, {"items": [{"key": "resume:b", "value": "2"}, {"key": "resume:a", "value": "1"}, {"bad": 1}]}),
    )
    kv = HttpKV("https://kv.example", session=session)
    assert kv.set("resume:a", "1") is True
    assert session.calls[0][2]["json"] == {"value": "1"}
    assert kv.set("resume:a", "1") is False
    assert kv.delete("resume:gone") is True
    assert kv.list("resume:", with_values=True) == [("resume:a", "1"), ("resume:b", "2")]
    assert session.calls[3][2]["params"] == {"prefix": "resume:", "values": "1"}


def test_http_errors_become_backend_unavailable():
    session = FakeSession(requests.ConnectionError("refused"), FakeResponse(503), requests.Timeout("slow"))
    kv = HttpKV("https://kv.example", session=session)
    with pytest.raises(BackendUnavailable):
        kv.get("resume:a")
    with pytest.raises(BackendUnavailable):
        kv.get("resume:a")
    assert kv.ping() is False


def test_http_bad_status_and_bodies_become_backend_unavailable():
    session = FakeSession(
        FakeResponse(403),
        FakeResponse(200, ValueError("Expecting value")),
        FakeResponse(200, ["not", "an", "object"]),
        FakeResponse(200, ValueError("Expecting value")),
    )
    kv = HttpKV("https://kv.example", session=session)
    for _ in range(3):
        with pytest.raises(BackendUnavailable):
            kv.get("resume:a")
    with pytest.raises(BackendUnavailable):
        kv.list("resume:")


def test_http_requires_base_url():
    with pytest.raises(ValueError):
        HttpKV("")


# ── Registry ─────────────────────────────────────────────────────────────


def test_get_backend_selects_by_setting(tmp_path):
    assert isinstance(get_backend(Settings(data_dir=tmp_path, kv_backend="memory")), MemoryKV)
    assert isinstance(get_backend(Settings(data_dir=tmp_path, kv_backend="http", kv_url="http://kv")), HttpKV)
    file_kv = get_backend(Settings(data_dir=tmp_path, kv_backend="FILE"))
    assert isinstance(file_kv, FileKV) and file_kv.path == tmp_path / "kv.json"
    assert isinstance(get_backend(Settings(data_dir=tmp_path, kv_backend="redis")), FileKV)


def test_memory_kv_fault_injection():
    kv = MemoryKV({"resume:a": "1"})
    kv.fail_delete.add("resume:")
    assert kv.delete("resume:a") is False
    kv.offline = True
    assert kv.ping() is False
    with pytest.raises(BackendUnavailable):
        kv.get("resume:a")
