from __future__ import annotations

import os

import pytest

from engrams.core.errors import StateError
from engrams.core.manifest import IndexEntry
from engrams.core.registry.lazy import EngramState, InitStatus, LazyInitializer, is_submodule_initialized
from tests.helpers.engram_builders import DummyLogger, write_engram
from tests.helpers.fakes import FakeCache, FakeIndexStore

WRAP_TOML = '\n[wrap]\nremote = "https://example.invalid/docs.git"\nref = "main"\nsparse = ["docs/"]\n'
LOCKED = "fedcba9876543210fedcba9876543210fedcba98"


def _entry(name: str, url: str, **extra) -> IndexEntry:  # noqa: ANN001
    return IndexEntry.model_validate({"name": name, "description": f"{name} engram", "url": url, **extra})


def _setup(tmp_path, index=None, unreachable=()):  # noqa: ANN001
    root = tmp_path / "proj"
    (root / ".engrams").mkdir(parents=True)
    store = FakeIndexStore(index=index)
    cache = FakeCache(unreachable=set(unreachable))
    lazy = LazyInitializer(str(root), cache=cache, index_store=store, logger=DummyLogger())
    return str(root), lazy, store, cache


def test_states(tmp_path):
    root, lazy, _, _ = _setup(tmp_path, index={"alpha": _entry("alpha", "u/alpha")})
    assert lazy.state("alpha") == EngramState.INDEXED
    assert lazy.state("ghost") == EngramState.ABSENT
    lazy.initialize("alpha")
    assert lazy.state("alpha") == EngramState.INITIALIZED
    assert is_submodule_initialized(root, ".engrams/alpha")


def test_initialize_submodule_then_idempotent(tmp_path):
    _, lazy, _, cache = _setup(tmp_path, index={"alpha": _entry("alpha", "u/alpha")})
    first = lazy.initialize("alpha")
    assert first.status == InitStatus.INITIALIZED
    assert cache.submodule_calls == [{"url": "u/alpha", "path": ".engrams/alpha", "force": False}]
    second = lazy.initialize("alpha")
    assert second.status == InitStatus.ALREADY_INITIALIZED
    assert len(cache.submodule_calls) == 1


def test_unknown_engram_is_state_error(tmp_path):
    _, lazy, _, _ = _setup(tmp_path, index={"alpha": _entry("alpha", "u/alpha")})
    with pytest.raises(StateError) as ei:
        lazy.initialize("ghost")
    assert "alpha" in ei.value.user_message


def test_directory_without_wrap_or_index_entry(tmp_path):
    root, lazy, _, _ = _setup(tmp_path, index={})
    os.makedirs(os.path.join(root, ".engrams", "orphan"))
    with pytest.raises(StateError) as ei:
        lazy.initialize("orphan")
    assert "[wrap]" in ei.value.user_message


def test_fetch_first(tmp_path):
    _, lazy, store, _ = _setup(tmp_path, index={"alpha": _entry("alpha", "u/alpha")})
    lazy.initialize("alpha", fetch_first=True)
    assert store.fetches == 1


def test_batch_continues_past_failures(tmp_path):
    index = {n: _entry(n, f"u/{n}") for n in ("a", "b", "c", "d", "e")}
    _, lazy, _, cache = _setup(tmp_path, index=index, unreachable={"u/c"})
    res = lazy.initialize_all()
    assert res.initialized == ["a", "b", "d", "e"]
    assert [n for n, _ in res.failed] == ["c"]
    assert "unreachable" in res.failed[0][1]
    assert not res.ok
    assert len(cache.submodule_calls) == 5

    again = lazy.initialize_all()
    assert again.skipped == ["a", "b", "d", "e"]
    assert [n for n, _ in again.failed] == ["c"]


def test_batch_reports_fetch_problems(tmp_path):
    _, lazy, store, _ = _setup(tmp_path, index={"a": _entry("a", "u/a")})
    store.fetch_ok = False
    res = lazy.initialize_all(fetch_first=True)
    assert res.ok
    assert res.warnings and "fetch" in res.warnings[0]


def test_wrap_materializes_and_records_lock(tmp_path):
    root, lazy, store, cache = _setup(tmp_path, index=None)
    write_engram(os.path.join(root, ".engrams"), "docs", extra=WRAP_TOML)
    assert lazy.state("docs") == EngramState.INDEXED

    res = lazy.initialize("docs")
    assert res.status == InitStatus.INITIALIZED
    assert res.kind == "wrap"
    assert res.commit == cache.commit
    assert cache.sparse_calls[0]["ref"] == "main"
    assert cache.sparse_calls[0]["sparse"] == ["docs/"]
    assert cache.sparse_calls[0]["dir"] == os.path.join(root, ".engrams", "docs", "content")
    entry = store.index["docs"]
    assert entry.locked == cache.commit
    assert entry.url == "https://example.invalid/docs.git"
    assert lazy.state("docs") == EngramState.INITIALIZED
    assert lazy.initialize("docs").status == InitStatus.ALREADY_INITIALIZED


def test_wrap_uses_locked_commit(tmp_path):
    index = {"docs": _entry("docs", "https://example.invalid/docs.git", wrap={"remote": "https://example.invalid/docs.git", "locked": LOCKED})}
    root, lazy, store, cache = _setup(tmp_path, index=index)
    write_engram(os.path.join(root, ".engrams"), "docs", extra=WRAP_TOML)
    res = lazy.initialize("docs")
    assert cache.sparse_calls[0]["ref"] == LOCKED
    assert res.commit == LOCKED
    assert store.writes == 0


def test_forced_wrap_ignores_lock_and_relocks(tmp_path):
    index = {"docs": _entry("docs", "https://example.invalid/docs.git", wrap={"remote": "https://example.invalid/docs.git", "locked": LOCKED})}
    root, lazy, store, cache = _setup(tmp_path, index=index)
    d = write_engram(os.path.join(root, ".engrams"), "docs", extra=WRAP_TOML)
    os.makedirs(os.path.join(d, "content", "old"))
    res = lazy.initialize("docs", force=True)
    assert res.status == InitStatus.INITIALIZED
    assert cache.sparse_calls[0]["ref"] == "main"
    assert not os.path.exists(os.path.join(d, "content", "old"))
    assert store.index["docs"].locked == cache.commit


def test_batch_includes_wrap_modules_on_disk(tmp_path):
    root, lazy, _, cache = _setup(tmp_path, index={"a": _entry("a", "u/a")})
    write_engram(os.path.join(root, ".engrams"), "docs", extra=WRAP_TOML)
    res = lazy.initialize_all()
    assert res.initialized == ["a", "docs"]
    assert len(cache.sparse_calls) == 1
