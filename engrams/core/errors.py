from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class EngramError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.user_message)

    def __str__(self) -> str:
        return self.user_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": {str(k): str(v)[:500] for k, v in (self.context or {}).items()},
        }


# ---- Core types ----
class ConfigError(EngramError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class ValidationError(EngramError):
    def __init__(self, user_message: str = "Invalid input.", **ctx: Any):
        super().__init__("validation_error", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class RemoteError(EngramError):
    def __init__(self, user_message: str = "Remote operation failed.", *, code: str = "remote_error", **ctx: Any):
        super().__init__(code, user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class CacheError(RemoteError):
    """
    Failure inside the repository cache. `stage` tells callers which step broke:
    mirror (create/fetch of the bare mirror) vs submodule/clone/checkout (the
    working copy built on top of it).
    """

    STAGES = ("mirror", "submodule", "clone", "checkout")

    def __init__(self, user_message: str = "Repository cache error.", *, stage: str = "mirror", **ctx: Any):
        self.stage = stage if stage in self.STAGES else "mirror"
        super().__init__(user_message, code=f"cache_{self.stage}_failed", stage=self.stage, **ctx)


class ConflictError(EngramError):
    def __init__(self, user_message: str = "Conflicting state.", **ctx: Any):
        super().__init__("conflict", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class StateError(EngramError):
    def __init__(self, user_message: str = "Operation not allowed in the current state.", **ctx: Any):
        super().__init__("state_error", user_message, severity=Severity.WARN, recoverable=True, context=ctx)
