"""Shared state handed to every build stage."""
from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .commands import CommandError, CommandResult, CommandRunner
from .config import DistroConfig
from .progress import ProgressReporter


class StageError(Exception):
    """A build stage failed; carries what is needed for a ``BuildError``."""

    def __init__(
        self,
        error_type: str,
        message: str,
        *,
        command: Optional[str] = None,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.command = command
        self.stdout = stdout
        self.stderr = stderr

    @classmethod
    def from_result(cls, error_type: str, message: str, result: CommandResult) -> "StageError":
        detail = result.stderr.strip() or result.stdout.strip()
        return cls(
            error_type,
            f"{message}: {detail}" if detail else message,
            command=result.command_line,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    @classmethod
    def from_command_error(cls, error_type: str, message: str, exc: CommandError) -> "StageError":
        return cls.from_result(error_type, message, exc.result)


@dataclass(frozen=True)
class BuildContext:
    config: DistroConfig
    work_dir: Path
    output_dir: Path
    runner: CommandRunner
    reporter: ProgressReporter
    which: Callable[[str], Optional[str]] = field(default=shutil.which)

    @property
    def rootfs_dir(self) -> Path:
        return self.work_dir / "rootfs"

    @property
    def boot_dir(self) -> Path:
        return self.work_dir / "boot"

    @property
    def iso_dir(self) -> Path:
        return self.work_dir / "iso"

    @property
    def cache_dir(self) -> Path:
        return self.work_dir / "cache" / "packages"

    @property
    def iso_path(self) -> Path:
        return self.output_dir / self.config.iso_filename

    def require_tools(self, error_type: str, *tools: str) -> None:
        missing = [tool for tool in tools if not self.which(tool)]
        if missing:
            raise StageError(error_type, f"Required tool(s) not found: {', '.join(missing)}")

    async def run(self, error_type: str, message: str, argv, *, check: bool = True) -> CommandResult:
        """Run a command, turning a failure into a ``StageError``."""
        try:
            return await self.runner.run(argv, check=check)
        except CommandError as exc:
            raise StageError.from_command_error(error_type, message, exc) from exc
        except OSError as exc:
            raise StageError(error_type, f"{message}: {exc}", command=" ".join(map(str, argv))) from exc
