from __future__ import annotations

import os

import pytest

from engrams.core.config.models import EngramsConfig
from engrams.core.config.paths import EngramsFsPaths
from engrams.core.git import GitRunner
from engrams.core.repo_cache import RepositoryCache


@pytest.fixture(autouse=True)
def isolated_git_env(tmp_path_factory, monkeypatch):
    """
    Every test gets its own XDG dirs and a private git config: fixed identity,
    `main` as default branch, and local-path remotes allowed for submodules.
    """
    home = tmp_path_factory.mktemp("home")
    gitconfig = home / "gitconfig"
    gitconfig.write_text(
        "[user]\n\tname = Engrams Test\n\temail = test@example.invalid\n"
        "[init]\n\tdefaultBranch = main\n"
        "[protocol \"file\"]\n\tallow = always\n"
        "[advice]\n\tdetachedHead = false\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(gitconfig))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(home / "cache"))
    for key in ("ENGRAMS_GIT_TIMEOUT", "ENGRAMS_CACHE_DIR", "ENGRAMS_ALLOW_FILE_PROTOCOL", "ENGRAMS_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    return home


@pytest.fixture
def fs_paths(tmp_path):
    fs = EngramsFsPaths(config_home=str(tmp_path / "config"), cache_home=str(tmp_path / "cache"))
    os.makedirs(fs.global_dir, exist_ok=True)
    return fs


@pytest.fixture
def engrams_config():
    return EngramsConfig(allow_file_protocol=True, git_timeout_seconds=60, lock_timeout_seconds=30)


@pytest.fixture
def git_runner():
    return GitRunner(timeout_seconds=60, allow_file_protocol=True)


@pytest.fixture
def repo_cache(fs_paths, git_runner):
    return RepositoryCache(cache_dir=fs_paths.cache_dir, git=git_runner, lock_timeout_seconds=30)
