from pathlib import Path

import pytest

from conftest import FakeRunner, failed
from distro_iso_builder.cache import MemoryPackageCache
from distro_iso_builder.commands import CommandError
from distro_iso_builder.config import BaseSystem, DesktopEnvironment
from distro_iso_builder.installer import (
    BatchPackageInstaller,
    desktop_packages,
    filter_bootstrap_packages,
    install_sequential,
    make_batches,
    unique,
)


def installed(runner: FakeRunner):
    return [call[call.index("--needed") + 1:] for call in runner.calls if "--needed" in call]


def test_make_batches_uses_groups_of_five():
    packages = [f"pkg{i}" for i in range(12)]
    batches = make_batches(packages)
    assert [len(batch) for batch in batches] == [5, 5, 2]
    assert sum(batches, []) == packages


def test_unique_preserves_order():
    assert unique(["git", "vim", "git", "", "curl", "vim"]) == ["git", "vim", "curl"]


def test_desktop_packages():
    assert desktop_packages(DesktopEnvironment.KDE) == ["plasma", "kde-applications"]
    assert desktop_packages(DesktopEnvironment.CUSTOM, "budgie-desktop") == ["budgie-desktop"]
    assert desktop_packages(DesktopEnvironment.CUSTOM) == []
    assert desktop_packages(DesktopEnvironment.NONE) == []
    assert desktop_packages(None) == []


def test_filter_bootstrap_packages():
    essential = ["base", "linux", "linux-firmware", "git"]
    assert filter_bootstrap_packages(BaseSystem.ARCH, essential) == ["git"]
    assert filter_bootstrap_packages(BaseSystem.DEBIAN, essential) == essential


def test_installer_rejects_scratch():
    with pytest.raises(ValueError):
        BatchPackageInstaller(FakeRunner(), BaseSystem.SCRATCH)


@pytest.mark.asyncio
async def test_batches_refresh_then_install(tmp_path: Path):
    runner = FakeRunner()
    installer = BatchPackageInstaller(runner, BaseSystem.ARCH, max_jobs=1, use_cache=False)
    await installer.install(tmp_path, ["a", "b", "c", "d", "e", "f"])
    assert runner.calls == [
        ["arch-chroot", str(tmp_path), "pacman", "-Sy", "--noconfirm"],
        ["arch-chroot", str(tmp_path), "pacman", "-S", "--noconfirm", "--needed", "a", "b", "c", "d", "e"],
        ["arch-chroot", str(tmp_path), "pacman", "-Sy", "--noconfirm"],
        ["arch-chroot", str(tmp_path), "pacman", "-S", "--noconfirm", "--needed", "f"],
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("max_jobs", [1, 2, 3])
async def test_concurrency_is_bounded(tmp_path: Path, max_jobs: int):
    runner = FakeRunner(delay=0.01)
    installer = BatchPackageInstaller(runner, BaseSystem.ARCH, max_jobs=max_jobs, use_cache=False)
    await installer.install(tmp_path, [f"pkg{i}" for i in range(40)])
    assert len(installed(runner)) == 8
    assert runner.peak_installs <= max_jobs
    assert installer.peak_concurrency <= max_jobs
    assert installer.peak_concurrency == max_jobs


@pytest.mark.asyncio
async def test_cached_batch_issues_no_commands(tmp_path: Path):
    runner = FakeRunner()
    cache = MemoryPackageCache(tmp_path / "cache", "x86_64")
    for name in ["a", "b", "c", "d", "e"]:
        await cache.put(name)
    installer = BatchPackageInstaller(runner, BaseSystem.ARCH, cache=cache, max_jobs=2)
    await installer.install(tmp_path, ["a", "b", "c", "d", "e"])
    assert runner.calls == []


@pytest.mark.asyncio
async def test_cache_filters_and_records(tmp_path: Path):
    runner = FakeRunner()
    cache = MemoryPackageCache(tmp_path / "cache", "x86_64")
    await cache.put("a")
    installer = BatchPackageInstaller(runner, BaseSystem.ARCH, cache=cache, max_jobs=2)
    await installer.install(tmp_path, ["a", "b", "c"])
    assert installed(runner) == [["b", "c"]]
    assert await cache.contains("b")
    assert await cache.contains("c")

    await installer.install(tmp_path, ["a", "b", "c"])
    assert len(installed(runner)) == 1


@pytest.mark.asyncio
async def test_failing_batch_aborts_install(tmp_path: Path):
    def respond(argv):
        if "broken" in argv:
            return failed(argv, "error: target not found: broken")
        return None

    runner = FakeRunner(respond=respond)
    cache = MemoryPackageCache(tmp_path / "cache", "x86_64")
    installer = BatchPackageInstaller(runner, BaseSystem.ARCH, cache=cache, max_jobs=1)
    with pytest.raises(CommandError) as excinfo:
        await installer.install(tmp_path, ["a", "b", "c", "d", "e", "broken", "f"])
    assert "broken" in excinfo.value.result.argv
    assert not await cache.contains("broken")


@pytest.mark.asyncio
async def test_refresh_failure_is_only_a_warning(tmp_path: Path, reporter, lines):
    runner = FakeRunner(respond=lambda argv: failed(argv) if "-Sy" in argv else None)
    installer = BatchPackageInstaller(runner, BaseSystem.ARCH, max_jobs=1, use_cache=False, reporter=reporter)
    await installer.install(tmp_path, ["git"])
    assert installed(runner) == [["git"]]
    assert any(line.startswith("Warning: Failed to refresh") for line in lines)


@pytest.mark.asyncio
async def test_debian_uses_apt_in_chroot(tmp_path: Path):
    runner = FakeRunner()
    installer = BatchPackageInstaller(runner, BaseSystem.DEBIAN, max_jobs=1, use_cache=False)
    await installer.install(tmp_path, ["git"])
    assert runner.calls == [
        ["chroot", str(tmp_path), "apt-get", "update"],
        ["chroot", str(tmp_path), "apt-get", "install", "-y", "--no-install-recommends", "git"],
    ]


@pytest.mark.asyncio
async def test_install_sequential_keeps_group_order(tmp_path: Path):
    runner = FakeRunner()
    await install_sequential(runner, BaseSystem.ARCH, tmp_path, [["git"], [], ["xfce4", "xfce4-goodies"], ["vim"]])
    assert installed(runner) == [["git"], ["xfce4", "xfce4-goodies"], ["vim"]]
    assert len(runner.calls) == 6
