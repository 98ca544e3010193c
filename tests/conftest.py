import asyncio
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import pytest

from distro_iso_builder.commands import CommandError, CommandResult
from distro_iso_builder.config import DistroConfig, PackageConfig
from distro_iso_builder.progress import ProgressReporter
from distro_iso_builder.validator import ConfigValidator


class FakeRunner:
    """Records every command and answers with scripted results."""

    def __init__(
        self,
        respond: Optional[Callable[[List[str]], Optional[CommandResult]]] = None,
        delay: float = 0.0,
    ) -> None:
        self.calls: List[List[str]] = []
        self.respond = respond
        self.delay = delay
        self.active_installs = 0
        self.peak_installs = 0

    async def run(self, argv: Sequence[str], *, check: bool = True) -> CommandResult:
        argv = [str(arg) for arg in argv]
        self.calls.append(argv)
        is_install = is_install_call(argv)
        if is_install:
            self.active_installs += 1
            self.peak_installs = max(self.peak_installs, self.active_installs)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            result = self.respond(argv) if self.respond else None
        finally:
            if is_install:
                self.active_installs -= 1
        if result is None:
            result = CommandResult(argv=argv, returncode=0, stdout="", stderr="")
            if argv[0] == "xorriso":
                output = Path(argv[argv.index("-output") + 1])
                output.parent.mkdir(parents=True, exist_ok=True)
                output.write_bytes(b"\0" * 2048)
        if check and result.returncode != 0:
            raise CommandError(result)
        return result

    def calls_to(self, program: str) -> List[List[str]]:
        return [call for call in self.calls if program in call]


def is_install_call(argv: Sequence[str]) -> bool:
    return (
        ("pacman" in argv and "-S" in argv)
        or ("apt-get" in argv and "install" in argv)
        or ("apk" in argv and "add" in argv and "--initdb" not in argv)
    )


def failed(argv: List[str], stderr: str = "boom", returncode: int = 1) -> CommandResult:
    return CommandResult(argv=argv, returncode=returncode, stdout="", stderr=stderr)


def all_tools(tool: str) -> str:
    return f"/usr/bin/{tool}"


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def validator() -> ConfigValidator:
    return ConfigValidator(which=all_tools, path_exists=lambda path: True, cpu_count=lambda: 4)


@pytest.fixture
def clean_config() -> DistroConfig:
    return DistroConfig(
        name="TestOS",
        version="2.0",
        packages=PackageConfig(essential=["networkmanager", "sudo"], additional_packages=["vim"]),
    )


@pytest.fixture
def lines() -> List[str]:
    return []


@pytest.fixture
def reporter(lines) -> ProgressReporter:
    return ProgressReporter(callback=lines.append)
