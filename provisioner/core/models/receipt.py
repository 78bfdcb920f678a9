"""
Receipt model — the backend execution contract.

The engine asks a backend to apply a descriptor; the backend answers
with a Receipt. Backends never raise: failures are captured here and
turned into InstallError by the executor.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Result of one backend operation.

    ``skipped`` means the target already matched the descriptor and
    nothing was done.
    """

    backend: str
    service_id: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    commands: list[str] = Field(default_factory=list)

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the operation succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the operation failed."""
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @classmethod
    def success(
        cls,
        backend: str,
        service_id: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(backend=backend, service_id=service_id, status="ok", output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        backend: str,
        service_id: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(backend=backend, service_id=service_id, status="failed", error=error, **kwargs)

    @classmethod
    def skip(
        cls,
        backend: str,
        service_id: str,
        reason: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(backend=backend, service_id=service_id, status="skipped", output=reason, **kwargs)
