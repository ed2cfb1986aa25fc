from __future__ import annotations

import os

from engrams.core.repo_url import find_project_root, get_engram_name, get_supported_domains, parse_repo_url, shorten_path


def test_short_form_defaults_to_github():
    ref = parse_repo_url("acme/eg.notes")
    assert ref is not None
    assert (ref.owner, ref.repo) == ("acme", "eg.notes")
    assert ref.url == "https://github.com/acme/eg.notes.git"
    assert ref.slug == "acme/eg.notes"


def test_domain_aliases():
    assert parse_repo_url("gl:acme/notes").url == "https://gitlab.com/acme/notes.git"
    assert parse_repo_url("codeberg:acme/notes").url == "https://codeberg.org/acme/notes.git"
    assert parse_repo_url("srht:acme/notes").url == "https://git.sr.ht/acme/notes.git"
    assert parse_repo_url("bogus:acme/notes") is None
    assert "gh" in get_supported_domains()


def test_full_urls():
    for text in (
        "https://github.com/acme/notes",
        "https://github.com/acme/notes.git",
        "git@github.com:acme/notes.git",
        "https://github.com/acme/notes/tree/main/docs",
    ):
        ref = parse_repo_url(text)
        assert ref is not None, text
        assert ref.url == "https://github.com/acme/notes.git"


def test_rejects_garbage():
    assert parse_repo_url("") is None
    assert parse_repo_url("not a repo") is None
    assert parse_repo_url("-acme/notes") is None
    assert parse_repo_url("acme/" + "x" * 101) is None
    assert parse_repo_url("a/b/c") is None


def test_engram_name_strips_prefix():
    assert get_engram_name("eg.notes") == "notes"
    assert get_engram_name("notes") == "notes"


def test_shorten_path():
    assert shorten_path("/home/me/x", home="/home/me") == "~/x"
    assert shorten_path("/srv/x", home="/home/me") == "/srv/x"


def test_find_project_root(tmp_path):
    root = tmp_path / "proj"
    nested = root / "a" / "b"
    nested.mkdir(parents=True)
    (root / ".engrams").mkdir()
    assert find_project_root(str(nested)) == str(root)
    lonely = tmp_path / "lonely"
    lonely.mkdir()
    found = find_project_root(str(lonely))
    assert found is None or not found.startswith(str(lonely))
    assert os.path.isabs(find_project_root(str(nested)))
