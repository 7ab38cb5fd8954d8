"""Core types shared across aoforge subsystems."""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ── ID Types ──────────────────────────────────────────────────────────────────

ProcessName: TypeAlias = str

DEFAULT_PROCESS_NAME: ProcessName = "default"


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Process States ────────────────────────────────────────────────────────────


class ProcessStatus(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class LaunchMode(str, Enum):
    """How the child's stdio is wired.

    foreground: inherits the caller's terminal (interactive aos session)
    background: devnull stdio, new session, outlives the parent
    piped: stdin/stdout/stderr pipes, required for evaluate()
    """

    FOREGROUND = "foreground"
    BACKGROUND = "background"
    PIPED = "piped"


# ── Process State ─────────────────────────────────────────────────────────────


class AOSFeatures(BaseModel):
    """Capabilities of the target aos runtime. Informational only."""

    coroutines: bool = False
    request_response: bool = False
    default_actions: bool = False
    bootloader: bool = False
    weavedrive: bool = False
    version: Literal["1.x", "2.x"] = "1.x"


class ProcessConfig(BaseModel):
    name: ProcessName
    wallet: str | None = None
    module: str | None = None
    cron: str | None = None
    monitor: bool = False
    sqlite: bool = False
    tags: dict[str, str] = Field(default_factory=dict)
    lua_files: list[str] = Field(default_factory=list)


class ProcessMessage(BaseModel):
    id: str = Field(default_factory=new_id)
    action: str = "log"
    data: Any = None
    tags: dict[str, str] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    sender: str = "process"
    recipient: str = "stdout"


class ProcessState(BaseModel):
    """In-memory view of the supervised process.

    Only the supervisor's event owner task mutates this after start.
    """

    id: ProcessName
    status: ProcessStatus = ProcessStatus.STARTING
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    features: AOSFeatures = Field(default_factory=AOSFeatures)
    messages: list[ProcessMessage] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    config: ProcessConfig

    @property
    def uptime_s(self) -> int:
        end = self.end_time or utcnow()
        return int((end - self.start_time).total_seconds())


# ── Launch Options ────────────────────────────────────────────────────────────

_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_MODULE_RE = re.compile(r"^[A-Za-z0-9_-]{43}$")
_CRON_RE = re.compile(r"^\d+-(second|minute|hour|day|week|month)s?$")


class ProcessOptions(BaseModel):
    """Per-launch options for `aos`. Validated at construction."""

    model_config = ConfigDict(extra="forbid")

    name: ProcessName | None = None
    wallet: str | None = None
    data: str | None = None
    tag_name: str | None = None
    tag_value: str | None = None
    module: str | None = None
    cron: str | None = None
    monitor: bool = False
    sqlite: bool = False
    gateway_url: str | None = None
    cu_url: str | None = None
    mu_url: str | None = None
    mode: LaunchMode = LaunchMode.FOREGROUND

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str | None) -> str | None:
        if v is not None and (len(v) > 50 or not _NAME_RE.match(v)):
            raise ValueError(
                "process name must be 1-50 characters of letters, digits, '-' or '_'"
            )
        return v

    @field_validator("wallet")
    @classmethod
    def _check_wallet(cls, v: str | None) -> str | None:
        if v is not None and (not v or ".." in v):
            raise ValueError("wallet path must be non-empty and must not contain '..'")
        return v

    @field_validator("cron")
    @classmethod
    def _check_cron(cls, v: str | None) -> str | None:
        if v is not None and not _CRON_RE.match(v):
            raise ValueError("cron must look like '<n>-<unit>', e.g. '10-minutes'")
        return v

    @field_validator("module")
    @classmethod
    def _check_module(cls, v: str | None) -> str | None:
        if v is not None and not _MODULE_RE.match(v):
            raise ValueError("module must be a 43-character Arweave transaction id")
        return v

    @property
    def tag(self) -> dict[str, str]:
        if self.tag_name and self.tag_value:
            return {self.tag_name: self.tag_value}
        return {}


# ── Scheduling ────────────────────────────────────────────────────────────────


class ScheduleConfig(BaseModel):
    """Tick scheduler settings. Frozen once built."""

    model_config = ConfigDict(frozen=True)

    interval_ms: int = Field(default=1000, gt=0)
    tick: str = Field(default="tick", min_length=1)
    max_retries: int = Field(default=3, ge=1)
    on_error: str = Field(default="handleError", min_length=1)

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000
