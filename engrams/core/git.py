from __future__ import annotations

"""
Thin subprocess wrapper around the git CLI.

WHY THIS FILE EXISTS:
Every persistent structure in engrams (bare mirrors, submodules, sparse
checkouts, the index reference) is plain git state. All git invocations go
through GitRunner so timeouts, prompt suppression and logging are uniform and
tests can substitute a fake runner.
"""

import os
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence


@dataclass(frozen=True)
class GitResult:
    ok: bool
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def out(self) -> str:
        return str(self.stdout or "").strip()

    @property
    def error_text(self) -> str:
        msg = str(self.stderr or "").strip() or str(self.stdout or "").strip()
        return msg or f"git exited with status {self.returncode}"


class GitRunner:
    def __init__(
        self,
        *,
        timeout_seconds: Optional[float] = 300.0,
        allow_file_protocol: bool = False,
        logger: Any = None,
        git_executable: str = "git",
    ):
        self.timeout_seconds = timeout_seconds
        self.allow_file_protocol = bool(allow_file_protocol)
        self.logger = logger
        self.git_executable = git_executable

    def _command(self, args: Sequence[str], config: Optional[Dict[str, str]]) -> list[str]:
        cmd = [self.git_executable]
        overrides = dict(config or {})
        if self.allow_file_protocol:
            # Submodule add/update refuse local-path remotes unless this is set.
            overrides.setdefault("protocol.file.allow", "always")
        for key, value in overrides.items():
            cmd.extend(["-c", f"{key}={value}"])
        cmd.extend(str(a) for a in args)
        return cmd

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[str] = None,
        config: Optional[Dict[str, str]] = None,
        env: Optional[Dict[str, str]] = None,
        input_text: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> GitResult:
        cmd = self._command(args, config)
        run_env = dict(os.environ)
        run_env["GIT_TERMINAL_PROMPT"] = "0"
        run_env.update(env or {})
        limit = self.timeout_seconds if timeout is None else timeout
        if self.logger is not None:
            self.logger.debug(f"git {' '.join(cmd[1:])} (cwd={cwd or '.'})")
        try:
            proc = subprocess.run(
                cmd,
                cwd=cwd,
                env=run_env,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=limit,
            )
        except FileNotFoundError:
            return GitResult(ok=False, returncode=127, stderr=f"{self.git_executable} executable not found")
        except subprocess.TimeoutExpired:
            return GitResult(ok=False, returncode=-1, stderr=f"git {args[0] if args else ''} timed out after {limit}s", timed_out=True)
        return GitResult(ok=proc.returncode == 0, returncode=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")
