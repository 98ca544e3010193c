"""Structured build progress and failure records."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from .config import ProgressVerbosity

logger = logging.getLogger(__name__)


STAGES: List[Tuple[str, str]] = [
    ("directories", "Setting up build directories"),
    ("rootfs", "Building root filesystem"),
    ("kernel", "Installing kernel"),
    ("packages", "Installing packages"),
    ("configure", "Configuring system"),
    ("branding", "Applying branding"),
    ("bootloader", "Configuring bootloader"),
    ("iso", "Creating ISO image"),
]

TOTAL_STEPS = len(STAGES)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class StepRecord:
    name: str
    number: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    success: Optional[bool] = None


@dataclass(slots=True)
class BuildProgress:
    """Progress of a single build; only ever moves forward."""

    build_id: str
    total_steps: int = TOTAL_STEPS
    current_step: str = ""
    current_step_number: int = 0
    started_at: datetime = field(default_factory=utc_now)
    step_started_at: Optional[datetime] = None
    history: List[StepRecord] = field(default_factory=list)
    _monotonic_start: float = field(default_factory=time.monotonic, repr=False)

    @classmethod
    def for_distro(cls, name: str) -> "BuildProgress":
        now = utc_now()
        return cls(build_id=f"{name}-{now:%Y%m%dT%H%M%SZ}", started_at=now)

    def start_step(self, name: str, number: int) -> StepRecord:
        if number < self.current_step_number:
            raise ValueError(f"Step {number} would rewind progress from step {self.current_step_number}")
        if number < 1 or number > self.total_steps:
            raise ValueError(f"Step {number} is outside 1..{self.total_steps}")
        now = utc_now()
        self.current_step = name
        self.current_step_number = number
        self.step_started_at = now
        record = StepRecord(name=name, number=number, started_at=now)
        self.history.append(record)
        return record

    def complete_step(self, success: bool) -> None:
        if not self.history:
            raise ValueError("No step has been started")
        record = self.history[-1]
        record.finished_at = utc_now()
        record.success = success

    def elapsed(self) -> float:
        return time.monotonic() - self._monotonic_start

    @property
    def started_steps(self) -> List[str]:
        return [record.name for record in self.history]


@dataclass(frozen=True, slots=True)
class BuildError:
    """The failure that terminated a build."""

    step: str
    error_type: str
    message: str
    build_id: str
    timestamp: datetime = field(default_factory=utc_now)
    command: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None

    def describe(self) -> str:
        lines = [
            f"Build {self.build_id} failed during '{self.step}' ({self.error_type}) "
            f"at {self.timestamp:%Y-%m-%d %H:%M:%S} UTC: {self.message}",
        ]
        if self.command:
            lines.append(f"Command: {self.command}")
        if self.stdout:
            lines.append(f"STDOUT: {self.stdout.strip()}")
        if self.stderr:
            lines.append(f"STDERR: {self.stderr.strip()}")
        return "\n".join(lines)


class ProgressReporter:
    """Send human readable progress lines to a callback."""

    def __init__(
        self,
        callback: Callable[[str], None] = print,
        verbosity: ProgressVerbosity = ProgressVerbosity.NORMAL,
    ) -> None:
        self.callback = callback
        self.verbosity = verbosity

    def step(self, progress: BuildProgress, title: str) -> None:
        line = f"[{progress.current_step_number}/{progress.total_steps}] {title}..."
        logger.info(line)
        if self.verbosity is not ProgressVerbosity.QUIET:
            self.callback(line)

    def note(self, message: str) -> None:
        logger.info(message)
        if self.verbosity is not ProgressVerbosity.QUIET:
            self.callback(message)

    def detail(self, message: str) -> None:
        logger.debug(message)
        if self.verbosity is ProgressVerbosity.VERBOSE:
            self.callback(message)

    def warning(self, message: str) -> None:
        logger.warning(message)
        self.callback(f"Warning: {message}")

    def error(self, message: str) -> None:
        logger.error(message)
        self.callback(f"Error: {message}")
