from __future__ import annotations

import os

from engrams.core.registry.file_tree import IgnoreMatcher, generate_file_tree, parse_ignore_rules
from tests.helpers.git_repos import write_files


def _rel(tree: str, root: str) -> list[str]:
    return [line[len(root) + 1 :] for line in tree.splitlines()]


def test_flat_absolute_listing(tmp_path):
    root = str(tmp_path / "e")
    write_files(root, {"README.md": "# r", "src/main.ts": "x", "src/utils.ts": "x"})
    lines = generate_file_tree(root).splitlines()
    assert os.path.join(root, "README.md") in lines
    assert os.path.join(root, "src") + "/" in lines
    assert os.path.join(root, "src", "main.ts") in lines
    assert not any(ch in "\n".join(lines) for ch in "├└│")


def test_skips_node_modules_git_and_dotfiles(tmp_path):
    root = str(tmp_path / "e")
    write_files(root, {"node_modules/pkg/index.js": "x", ".git/HEAD": "x", ".env": "x", "src/index.ts": "x"})
    rel = _rel(generate_file_tree(root), root)
    assert rel == ["src/", "src/index.ts"]


def test_max_depth(tmp_path):
    root = str(tmp_path / "e")
    write_files(root, {"a/b/c/d/deep.ts": "x"})
    tree = generate_file_tree(root, max_depth=2)
    assert "deep.ts" not in tree
    assert os.path.join(root, "a", "b") + "/" in tree


def test_missing_directory_is_empty_string(tmp_path):
    assert generate_file_tree(str(tmp_path / "nope")) == ""


def test_ignore_file(tmp_path):
    root = str(tmp_path / "e")
    write_files(
        root,
        {
            "README.md": "# r",
            "src/index.ts": "x",
            "secrets/api-key.txt": "s",
            "debug.log": "l",
            ".ignore": "# comment\nsecrets/\n*.log\n",
        },
    )
    rel = _rel(generate_file_tree(root), root)
    assert rel == ["README.md", "src/", "src/index.ts"]


def test_ignore_negation(tmp_path):
    root = str(tmp_path / "e")
    write_files(root, {"logs/debug.log": "d", "logs/important.log": "i", ".ignore": "logs/*.log\n!logs/important.log\n"})
    rel = _rel(generate_file_tree(root), root)
    assert rel == ["logs/", "logs/important.log"]


def test_dir_only_rule_does_not_hit_files():
    m = IgnoreMatcher(parse_ignore_rules("build/\n"))
    assert m.ignored("build", True)
    assert not m.ignored("build", False)
    assert m.ignored("pkg/build", True)


def test_file_metadata(tmp_path):
    root = str(tmp_path / "e")
    write_files(
        root,
        {
            "backup.sh": "#!/bin/bash\n# oneliner: Database backup utilities\necho hi\n",
            "no-meta.txt": "Just text",
        },
    )
    tree = generate_file_tree(root, include_metadata=True)
    assert f"{os.path.join(root, 'backup.sh')}  # Database backup utilities" in tree.splitlines()
    assert os.path.join(root, "no-meta.txt") in tree.splitlines()
    assert "# Database backup utilities" not in generate_file_tree(root)


def test_directory_metadata_prefers_oneliner(tmp_path):
    root = str(tmp_path / "e")
    write_files(
        root,
        {
            "lib/.oneliner": "From .oneliner",
            "lib/.oneliner.txt": "From .oneliner.txt",
            "scripts/.oneliner.txt": "Shell scripts for automation",
            "scripts/run.sh": "echo run",
        },
    )
    tree = generate_file_tree(root, include_metadata=True)
    assert f"{os.path.join(root, 'lib')}/  # From .oneliner" in tree.splitlines()
    assert "From .oneliner.txt" not in tree
    assert "# Shell scripts for automation" in tree
    assert ".oneliner" not in tree.replace("# From .oneliner", "")
