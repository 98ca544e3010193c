"""Asynchronous execution of external build tools."""
from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Protocol, Sequence

from .config import BaseSystem

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    argv: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return format_argv(self.argv)


class CommandError(RuntimeError):
    """An external command exited with a non-zero status."""

    def __init__(self, result: CommandResult) -> None:
        self.result = result
        detail = result.stderr.strip() or result.stdout.strip()
        super().__init__(f"Command failed ({result.returncode}): {result.command_line}\n{detail}".rstrip())


class CommandRunner(Protocol):
    async def run(self, argv: Sequence[str], *, check: bool = True) -> CommandResult:
        ...


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(arg)) for arg in argv)


class SubprocessRunner:
    """Run commands with ``asyncio`` subprocesses, capturing their output."""

    def __init__(self, *, dry_run: bool = False) -> None:
        self.dry_run = dry_run

    async def run(self, argv: Sequence[str], *, check: bool = True) -> CommandResult:
        argv_list = [str(arg) for arg in argv]
        logger.info("CMD %s", format_argv(argv_list))
        if self.dry_run:
            return CommandResult(argv=argv_list, returncode=0, stdout="", stderr="")

        process = await asyncio.create_subprocess_exec(
            *argv_list,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                logger.warning("Terminating %s", argv_list[0])
                process.kill()
                await process.wait()
            raise

        result = CommandResult(
            argv=argv_list,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        if result.stdout:
            logger.debug("STDOUT %s", result.stdout.strip())
        if result.stderr:
            logger.debug("STDERR %s", result.stderr.strip())
        if check and not result.ok:
            raise CommandError(result)
        return result


def chroot_argv(base_system: BaseSystem, rootfs: Path, argv: Sequence[str]) -> List[str]:
    """Wrap ``argv`` so it runs inside ``rootfs``."""
    wrapper = "arch-chroot" if base_system is BaseSystem.ARCH else "chroot"
    return [wrapper, str(rootfs), *argv]
