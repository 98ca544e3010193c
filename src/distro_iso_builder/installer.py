"""Package installation into the rootfs, sequential or in concurrent batches."""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from .cache import PackageCache
from .commands import CommandError, CommandRunner, chroot_argv
from .config import BaseSystem, DesktopEnvironment
from .progress import ProgressReporter

logger = logging.getLogger(__name__)


BATCH_SIZE = 5


@dataclass(frozen=True, slots=True)
class PackageManager:
    """Argument vectors for a distribution's package manager."""

    name: str
    refresh: List[str]
    install: List[str]

    def install_argv(self, packages: Sequence[str]) -> List[str]:
        return [*self.install, *packages]


PACKAGE_MANAGERS: Dict[BaseSystem, PackageManager] = {
    BaseSystem.ARCH: PackageManager("pacman", ["pacman", "-Sy", "--noconfirm"], ["pacman", "-S", "--noconfirm", "--needed"]),
    BaseSystem.DEBIAN: PackageManager("apt-get", ["apt-get", "update"], ["apt-get", "install", "-y", "--no-install-recommends"]),
    BaseSystem.UBUNTU: PackageManager("apt-get", ["apt-get", "update"], ["apt-get", "install", "-y", "--no-install-recommends"]),
    BaseSystem.FEDORA: PackageManager("dnf", ["dnf", "-y", "makecache"], ["dnf", "-y", "install"]),
    BaseSystem.CENTOS: PackageManager("dnf", ["dnf", "-y", "makecache"], ["dnf", "-y", "install"]),
    BaseSystem.OPENSUSE: PackageManager("zypper", ["zypper", "--non-interactive", "refresh"], ["zypper", "--non-interactive", "install"]),
    BaseSystem.ALPINE: PackageManager("apk", ["apk", "update"], ["apk", "add"]),
}

# Packages the bootstrap step already puts into the rootfs.
BOOTSTRAP_PACKAGES: Dict[BaseSystem, FrozenSet[str]] = {
    BaseSystem.ARCH: frozenset({"base", "linux", "linux-firmware"}),
    BaseSystem.ALPINE: frozenset({"alpine-base"}),
}

DESKTOP_PACKAGES: Dict[DesktopEnvironment, List[str]] = {
    DesktopEnvironment.GNOME: ["gnome"],
    DesktopEnvironment.KDE: ["plasma", "kde-applications"],
    DesktopEnvironment.XFCE: ["xfce4", "xfce4-goodies"],
    DesktopEnvironment.LXDE: ["lxde"],
    DesktopEnvironment.MATE: ["mate"],
    DesktopEnvironment.CINNAMON: ["cinnamon"],
    DesktopEnvironment.SWAY: ["sway"],
    DesktopEnvironment.I3: ["i3"],
}


def package_manager_for(base_system: BaseSystem) -> Optional[PackageManager]:
    return PACKAGE_MANAGERS.get(base_system)


def desktop_packages(desktop: Optional[DesktopEnvironment], custom_name: str = "") -> List[str]:
    if desktop is None or desktop is DesktopEnvironment.NONE:
        return []
    if desktop is DesktopEnvironment.CUSTOM:
        return [custom_name] if custom_name else []
    return list(DESKTOP_PACKAGES[desktop])


def filter_bootstrap_packages(base_system: BaseSystem, packages: Iterable[str]) -> List[str]:
    provided = BOOTSTRAP_PACKAGES.get(base_system, frozenset())
    return [pkg for pkg in packages if pkg not in provided]


def unique(packages: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for pkg in packages:
        if pkg and pkg not in seen:
            seen.add(pkg)
            ordered.append(pkg)
    return ordered


def make_batches(packages: Sequence[str], size: int = BATCH_SIZE) -> List[List[str]]:
    return [list(packages[index:index + size]) for index in range(0, len(packages), size)]


async def _refresh_and_install(
    runner: CommandRunner,
    base_system: BaseSystem,
    manager: PackageManager,
    rootfs: Path,
    packages: Sequence[str],
    reporter: Optional[ProgressReporter],
) -> None:
    refresh = await runner.run(chroot_argv(base_system, rootfs, manager.refresh), check=False)
    if not refresh.ok:
        message = f"Failed to refresh the {manager.name} package database in chroot"
        if reporter:
            reporter.warning(message)
        else:
            logger.warning(message)
    await runner.run(chroot_argv(base_system, rootfs, manager.install_argv(packages)))


async def install_sequential(
    runner: CommandRunner,
    base_system: BaseSystem,
    rootfs: Path,
    groups: Sequence[Sequence[str]],
    reporter: Optional[ProgressReporter] = None,
) -> None:
    """Install each non-empty group with one refresh and one install call, in order."""
    manager = package_manager_for(base_system)
    if manager is None:
        raise ValueError(f"No package manager available for base system {base_system.value}")
    for group in groups:
        if not group:
            continue
        if reporter:
            reporter.note(f"Installing packages: {', '.join(group)}")
        await _refresh_and_install(runner, base_system, manager, rootfs, group, reporter)


class BatchPackageInstaller:
    """Install packages in fixed-size batches with bounded concurrency."""

    def __init__(
        self,
        runner: CommandRunner,
        base_system: BaseSystem,
        *,
        cache: Optional[PackageCache] = None,
        max_jobs: Optional[int] = None,
        use_cache: bool = True,
        batch_size: int = BATCH_SIZE,
        reporter: Optional[ProgressReporter] = None,
    ) -> None:
        manager = package_manager_for(base_system)
        if manager is None:
            raise ValueError(f"No package manager available for base system {base_system.value}")
        self.runner = runner
        self.base_system = base_system
        self.manager = manager
        self.cache = cache
        self.max_jobs = max(1, max_jobs or os.cpu_count() or 1)
        self.use_cache = use_cache and cache is not None
        self.batch_size = batch_size
        self.reporter = reporter
        self.active = 0
        self.peak_concurrency = 0

    async def install(self, rootfs: Path, packages: Sequence[str]) -> None:
        batches = make_batches(unique(packages), self.batch_size)
        if not batches:
            return
        logger.info(
            "Installing %d package(s) in %d batch(es), %d job(s) at a time",
            sum(len(batch) for batch in batches), len(batches), self.max_jobs,
        )
        semaphore = asyncio.Semaphore(self.max_jobs)
        tasks = [
            asyncio.ensure_future(self._install_batch(semaphore, rootfs, index, batch))
            for index, batch in enumerate(batches, start=1)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _install_batch(
        self,
        semaphore: asyncio.Semaphore,
        rootfs: Path,
        index: int,
        batch: List[str],
    ) -> None:
        async with semaphore:
            pending = batch
            if self.use_cache:
                pending = await self.cache.filter_missing(batch)
                if not pending:
                    logger.info("Batch %d: all packages cached, skipping", index)
                    return
            if self.reporter:
                self.reporter.detail(f"Batch {index}: {', '.join(pending)}")

            self.active += 1
            self.peak_concurrency = max(self.peak_concurrency, self.active)
            try:
                await _refresh_and_install(self.runner, self.base_system, self.manager, rootfs, pending, self.reporter)
            except CommandError:
                logger.error("Batch %d failed: %s", index, ", ".join(pending))
                raise
            finally:
                self.active -= 1

            if self.use_cache:
                for name in pending:
                    await self.cache.put(name)
