from __future__ import annotations

import os
from typing import Optional


class DummyLogger:
    def __init__(self) -> None:
        self.warnings: list[str] = []

    def debug(self, *_a, **_k): ...
    def info(self, *_a, **_k): ...
    def error(self, *_a, **_k): ...

    def warning(self, msg, *_a, **_k) -> None:  # noqa: ANN001
        self.warnings.append(str(msg))


def engram_toml(
    name: str,
    description: str = "A reusable context module for tests",
    *,
    extra: str = "",
) -> str:
    return f'name = "{name}"\ndescription = "{description}"\nversion = "1.0.0"\n' + (extra or "")


def write_engram(
    root: str,
    dirname: str,
    *,
    name: Optional[str] = None,
    description: str = "A reusable context module for tests",
    extra: str = "",
    readme: Optional[str] = None,
) -> str:
    """Write <root>/<dirname>/engram.toml (+ README.md); returns the engram directory."""
    directory = os.path.join(root, dirname)
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, "engram.toml"), "w", encoding="utf-8") as f:
        f.write(engram_toml(name or dirname, description, extra=extra))
    if readme is not None:
        with open(os.path.join(directory, "README.md"), "w", encoding="utf-8") as f:
            f.write(readme)
    return directory
