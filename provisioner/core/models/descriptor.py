"""
Service descriptor models — the declarative input of a provisioning run.

A descriptor set is loaded from YAML and describes everything the engine
needs: which backend to use, what the target host must look like, and the
services to provision. Descriptors are read-only: nothing in the engine
mutates them during a run.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ── Install action ──────────────────────────────────────────────────


class UnitSpec(BaseModel):
    """A long-running service definition, rendered by the backend."""

    model_config = ConfigDict(frozen=True)

    exec_start: str
    name: str | None = None          # unit name (default: descriptor id)
    description: str = ""
    type: str = "simple"
    user: str = "root"
    working_directory: str | None = None
    environment: dict[str, str] = Field(default_factory=dict)
    after: list[str] = Field(default_factory=list)   # extra ordering targets
    wanted_by: str = "multi-user.target"


class InstallAction(BaseModel):
    """How to install a service.

    The engine never interprets these fields; only backends do.
    """

    model_config = ConfigDict(frozen=True)

    packages: list[str] = Field(default_factory=list)
    version: str | None = None       # pin applied to every package
    check: str | None = None         # exit 0 → already installed
    command: str | None = None       # runs only when check fails
    files: dict[str, str] = Field(default_factory=dict)
    executable: list[str] = Field(default_factory=list)   # paths in files, written 0755
    unit: UnitSpec | None = None
    nix: dict[str, Any] = Field(default_factory=dict)
    timeout: int = 1800              # seconds, per install command

    @model_validator(mode="after")
    def _executable_in_files(self) -> InstallAction:
        unknown = [path for path in self.executable if path not in self.files]
        if unknown:
            raise ValueError(f"executable paths not declared in files: {', '.join(unknown)}")
        return self


# ── Health and restart ──────────────────────────────────────────────


class HttpProbe(BaseModel):
    """HTTP liveness probe: GET url, match status and optional body text."""

    model_config = ConfigDict(frozen=True)

    url: str
    expect_status: list[int] = Field(default_factory=lambda: [200])
    body_contains: str | None = None
    timeout: float = 2.0


class HealthCheck(BaseModel):
    """How to decide Healthy vs. not-yet-healthy, and how long to try.

    Exactly one of ``http``, ``process`` or ``command`` may be set.
    With none set the service is considered healthy once installed.
    """

    model_config = ConfigDict(frozen=True)

    http: HttpProbe | None = None
    process: str | None = None       # unit name; "" means the descriptor id
    command: str | None = None
    max_attempts: int = Field(default=30, ge=1)
    interval: float = Field(default=1.0, ge=0)
    backoff: float = Field(default=1.0, ge=1.0)
    max_interval: float = Field(default=30.0, ge=0)

    @model_validator(mode="after")
    def _single_probe(self) -> HealthCheck:
        set_probes = [
            name
            for name, value in (
                ("http", self.http),
                ("process", self.process),
                ("command", self.command),
            )
            if value is not None
        ]
        if len(set_probes) > 1:
            raise ValueError(
                f"health check must declare one probe, got: {', '.join(set_probes)}"
            )
        return self

    @property
    def kind(self) -> str:
        if self.http is not None:
            return "http"
        if self.process is not None:
            return "process"
        if self.command is not None:
            return "command"
        return "none"


class RestartPolicy(BaseModel):
    """What the service manager does when the process exits."""

    model_config = ConfigDict(frozen=True)

    policy: Literal["never", "on-failure", "always"] = "on-failure"
    backoff: float = Field(default=3.0, ge=0)

    @property
    def systemd_value(self) -> str:
        return "no" if self.policy == "never" else self.policy


# ── Service descriptor ──────────────────────────────────────────────


class ServiceDescriptor(BaseModel):
    """One provisionable unit (e.g. "LLM runtime", "chat UI")."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    description: str = ""
    endpoint: str | None = None
    depends_on: list[str] = Field(default_factory=list)
    install: InstallAction = Field(default_factory=InstallAction)
    config: dict[str, str] = Field(default_factory=dict)
    health: HealthCheck = Field(default_factory=HealthCheck)
    restart: RestartPolicy = Field(default_factory=RestartPolicy)

    @field_validator("depends_on")
    @classmethod
    def _dedupe_deps(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    @field_validator("config", mode="before")
    @classmethod
    def _stringify_config(cls, value: Any) -> Any:
        # YAML turns `WEBUI_AUTH: False` into a bool; env files want text.
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    @property
    def unit_name(self) -> str:
        """Service-manager unit name for this descriptor."""
        if self.install.unit and self.install.unit.name:
            return self.install.unit.name
        return self.id


# ── Target requirements ─────────────────────────────────────────────


class OsRequirement(BaseModel):
    """An accepted operating system.

    ``version`` matches by dotted prefix ("12" accepts "12.4");
    ``min_version`` compares numerically ("24.05" accepts "24.11").
    """

    id: str
    version: str = ""
    min_version: str = ""


class NetworkCheck(BaseModel):
    """Single outbound reachability check against a known-good address."""

    host: str = "8.8.8.8"
    port: int = 53
    timeout: float = 2.0


class TargetRequirements(BaseModel):
    """What the host must provide before anything is installed."""

    os: list[OsRequirement] = Field(default_factory=list)
    min_ram_gb: float = 0
    min_disk_gb: float = 0
    disk_path: str = "/"
    soft_min_cpus: int = 0
    network: NetworkCheck | None = None
    require_root: bool = False


class BackendSpec(BaseModel):
    """Which installer backend applies the set, and its options."""

    name: str = "apt-systemd"
    options: dict[str, Any] = Field(default_factory=dict)


# ── Descriptor set ──────────────────────────────────────────────────


class DescriptorSet(BaseModel):
    """Root document of a descriptor file.

    ``services`` is keyed by service id. Key order is the declaration
    order used to break ties when planning.
    """

    name: str
    description: str = ""
    backend: BackendSpec = Field(default_factory=BackendSpec)
    target: TargetRequirements = Field(default_factory=TargetRequirements)
    services: dict[str, ServiceDescriptor] = Field(default_factory=dict)

    @field_validator("backend", mode="before")
    @classmethod
    def _backend_shorthand(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"name": value}
        return value

    @field_validator("services", mode="before")
    @classmethod
    def _inject_ids(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        out: dict[str, Any] = {}
        for key, body in value.items():
            body = dict(body or {}) if not isinstance(body, ServiceDescriptor) else body
            if isinstance(body, dict):
                declared = body.setdefault("id", key)
                if declared != key:
                    raise ValueError(f"service key '{key}' does not match id '{declared}'")
            out[key] = body
        return out

    def descriptors(self) -> list[ServiceDescriptor]:
        """All descriptors in declaration order."""
        return list(self.services.values())
