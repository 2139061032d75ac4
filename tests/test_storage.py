import json
import threading

import pytest

from db import db
from models import SubmissionRecord
from storage import (
    DISCARD,
    FILE,
    RELATIONAL,
    Backend,
    Discard,
    FallbackChain,
    FileStore,
    RelationalStore,
    StoreOutcome,
)
from errors import StoreUnavailable


def _record(**fields):
    fields.setdefault("email", "a@x.com")
    return SubmissionRecord.from_payload(fields)


class FailingBackend(Backend):
    name = "broken"

    def __init__(self):
        self.calls = 0

    def _write(self, record):
        self.calls += 1
        raise StoreUnavailable(self.name, "boom")


class CountingBackend(Backend):
    name = "counting"

    def __init__(self):
        self.calls = 0

    def _write(self, record):
        self.calls += 1
        return 42


# --- FileStore

def test_file_store_creates_collection(tmp_path):
    path = tmp_path / "form-submissions.json"
    outcome = FileStore(path).save(_record(form_type="brochure"))

    assert outcome == StoreOutcome(FILE, committed=True)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert len(data) == 1
    assert data[0]["form_type"] == "brochure"
    assert isinstance(data[0]["created_at"], str)


def test_file_store_appends(tmp_path):
    store = FileStore(tmp_path / "form-submissions.json")
    store.save(_record(first_name="One"))
    store.save(_record(first_name="Two"))

    assert [e["first_name"] for e in store.entries()] == ["One", "Two"]


def test_file_store_leaves_foreign_content_alone(tmp_path):
    path = tmp_path / "form-submissions.json"
    path.write_text('{"not": "a list"}', encoding="utf-8")

    outcome = FileStore(path).save(_record())

    assert not outcome.committed
    assert path.read_text(encoding="utf-8") == '{"not": "a list"}'


def test_file_store_unwritable_location(tmp_path):
    outcome = FileStore(tmp_path / "missing" / "form-submissions.json").save(_record())
    assert not outcome.committed
    assert outcome.backend == FILE
    assert "cannot write" in outcome.error


def test_file_store_concurrent_writers_lose_nothing(tmp_path):
    # Unlocked read-modify-write would drop entries here.
    store = FileStore(tmp_path / "form-submissions.json")
    threads_n, per_thread = 8, 10

    def worker(n):
        for i in range(per_thread):
            store.save(_record(first_name=f"t{n}-{i}"))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(threads_n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    names = {e["first_name"] for e in store.entries()}
    assert len(names) == threads_n * per_thread


# --- RelationalStore

def test_relational_store_without_database():
    outcome = RelationalStore(None).save(_record())
    assert outcome.committed is False
    assert outcome.error == "No database connection"


def test_relational_store_inserts(app):
    store = RelationalStore(db)
    with app.app_context():
        first = store.save(_record(first_name="Asha"))
        second = store.save(_record(first_name="Ravi"))

    assert first == StoreOutcome(RELATIONAL, committed=True, record_id=1)
    assert second.record_id == 2


def test_relational_store_rejects_unknown_form_type(app):
    store = RelationalStore(db)
    with app.app_context():
        bad = store.save(_record(form_type="webinar"))
        good = store.save(_record())

    assert not bad.committed
    # the session was rolled back and is usable again
    assert good.committed


def test_relational_store_missing_table(make_app):
    app = make_app(provision=False)
    with app.app_context():
        outcome = RelationalStore(db).save(_record())
    assert not outcome.committed
    assert "form_submissions" in outcome.error


# --- FallbackChain

def test_chain_always_ends_with_discard():
    chain = FallbackChain([CountingBackend()])
    assert isinstance(chain.backends[-1], Discard)

    chain = FallbackChain([Discard()])
    assert len(chain.backends) == 1


def test_chain_stops_at_first_success():
    first, second = CountingBackend(), CountingBackend()
    outcome = FallbackChain([first, second]).save(_record())

    assert outcome.record_id == 42
    assert (first.calls, second.calls) == (1, 0)


def test_chain_falls_through_in_order():
    broken, counting = FailingBackend(), CountingBackend()
    outcome = FallbackChain([broken, counting]).save(_record())

    assert outcome.backend == "counting"
    assert broken.calls == 1


def test_chain_discards_when_everything_fails():
    outcome = FallbackChain([FailingBackend(), FailingBackend()]).save(_record())
    assert outcome == StoreOutcome(DISCARD, committed=True)


@pytest.mark.parametrize("backends", [[], [Discard()]])
def test_discard_only_chain(backends):
    assert FallbackChain(backends).save(_record()).backend == DISCARD


def test_backend_needs_a_write_method():
    with pytest.raises(TypeError):
        Backend()


def test_failed_write_removes_temp_file(tmp_path, monkeypatch):
    def refuse(src, dst):
        raise OSError("read-only file system")

    monkeypatch.setattr("storage.os.replace", refuse)
    path = tmp_path / "form-submissions.json"
    outcome = FileStore(path).save(_record())

    assert not outcome.committed
    assert not path.exists()
    assert list(tmp_path.iterdir()) == []
