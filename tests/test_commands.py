import sys
from pathlib import Path

import pytest

from distro_iso_builder.commands import CommandError, CommandResult, SubprocessRunner, chroot_argv, format_argv
from distro_iso_builder.config import BaseSystem


@pytest.mark.asyncio
async def test_subprocess_runner_captures_output():
    runner = SubprocessRunner()
    result = await runner.run([sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr)"])
    assert result.ok
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


@pytest.mark.asyncio
async def test_subprocess_runner_raises_on_failure():
    runner = SubprocessRunner()
    with pytest.raises(CommandError) as excinfo:
        await runner.run([sys.executable, "-c", "import sys; sys.stderr.write('nope'); sys.exit(3)"])
    assert excinfo.value.result.returncode == 3
    assert "nope" in str(excinfo.value)


@pytest.mark.asyncio
async def test_subprocess_runner_unchecked_failure():
    result = await SubprocessRunner().run([sys.executable, "-c", "raise SystemExit(2)"], check=False)
    assert result.returncode == 2
    assert not result.ok


@pytest.mark.asyncio
async def test_dry_run_executes_nothing(tmp_path: Path):
    marker = tmp_path / "marker"
    result = await SubprocessRunner(dry_run=True).run(["touch", marker])
    assert result.ok
    assert result.argv == ["touch", str(marker)]
    assert not marker.exists()


def test_command_line_quotes_arguments():
    result = CommandResult(argv=["echo", "two words"], returncode=0, stdout="", stderr="")
    assert result.command_line == "echo 'two words'"
    assert format_argv(["ls", Path("/tmp")]) == "ls /tmp"


def test_chroot_argv():
    assert chroot_argv(BaseSystem.ARCH, Path("/r"), ["pacman", "-Sy"]) == ["arch-chroot", "/r", "pacman", "-Sy"]
    assert chroot_argv(BaseSystem.FEDORA, Path("/r"), ["dnf"]) == ["chroot", "/r", "dnf"]
