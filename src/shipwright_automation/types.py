from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

Scalar = Union[str, int, float, bool]


@dataclass
class HostConfig:
    name: str
    address: Optional[str] = None
    connection: str = "ssh"
    user: str = "root"
    key_file: Optional[Path] = None
    port: int = 22
    groups: list[str] = field(default_factory=list)
    variables: dict[str, Scalar] = field(default_factory=dict)


@dataclass
class TaskSpec:
    type: str
    data: dict[str, Any]
    name: Optional[str] = None
    best_effort: bool = False

    @property
    def label(self) -> str:
        return self.name or self.type


@dataclass
class Play:
    name: str
    hosts: list[str]
    tasks: list[TaskSpec]


@dataclass
class Plan:
    hosts: dict[str, HostConfig]
    plays: list[Play]
    variables: dict[str, Scalar] = field(default_factory=dict)
    overrides: dict[str, Scalar] = field(default_factory=dict)
    base_dir: Optional[Path] = None


@dataclass
class ActionResult:
    host: str
    action: str
    changed: bool
    details: str
    failed: bool = False
    resource: Optional[str] = None
    output: list[str] = field(default_factory=list)
    task: Optional[str] = None
    best_effort: bool = False


@dataclass
class RunReport:
    results: list[ActionResult] = field(default_factory=list)
    failed_task: Optional[str] = None
    error: Optional[Exception] = None
    planned: int = 0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if not r.failed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def changed(self) -> int:
        return sum(1 for r in self.results if r.changed)

    @property
    def ok(self) -> bool:
        return self.failed_task is None
