"""Eight stage build pipeline producing a bootable distribution ISO."""
from __future__ import annotations

import asyncio
import copy
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Tuple

from .bootloader import (
    BootloaderStatus,
    configure_bootloader,
    copy_kernel_artifacts,
    copy_syslinux_assets,
    xorriso_argv,
)
from .bootstrap import BOOTSTRAPPERS, NON_FATAL_KERNEL_MARKERS, bootstrap_command_preview, kernel_package
from .cache import MemoryPackageCache, PackageCache
from .commands import CommandError, CommandRunner, SubprocessRunner, chroot_argv
from .config import BaseSystem, Bootloader, CompressionType, DistroConfig
from .context import BuildContext, StageError
from .installer import (
    BatchPackageInstaller,
    desktop_packages,
    filter_bootstrap_packages,
    install_sequential,
    package_manager_for,
)
from .progress import STAGES, BuildError, BuildProgress, ProgressReporter
from .validator import ConfigValidator, ValidationResult

logger = logging.getLogger(__name__)


SYSTEMD_SERVICES = [
    "NetworkManager.service",
    "systemd-resolved.service",
    "systemd-timesyncd.service",
]

SECONDS_PER_MINUTE = 60

STAGE_ERROR_TYPES = {
    "directories": "filesystem",
    "rootfs": "bootstrap",
    "kernel": "kernel_installation",
    "packages": "package_installation",
    "configure": "configuration",
    "branding": "branding",
    "bootloader": "bootloader",
    "iso": "iso_creation",
}


class ValidationFailed(Exception):
    """The configuration did not pass validation; nothing was built."""

    def __init__(self, result: ValidationResult) -> None:
        self.result = result
        super().__init__(f"Configuration validation failed with {len(result.errors)} error(s)")


@dataclass(slots=True)
class BuildResult:
    success: bool
    validation: ValidationResult
    progress: BuildProgress
    elapsed: float
    iso_path: Optional[Path] = None
    iso_size: Optional[int] = None
    size_warning: Optional[str] = None
    error: Optional[BuildError] = None


class DistroBuilder:
    """Run validation and the build stages for one distribution config."""

    def __init__(
        self,
        config: DistroConfig,
        work_dir: Path,
        output_dir: Path,
        *,
        runner: Optional[CommandRunner] = None,
        cache: Optional[PackageCache] = None,
        validator: Optional[ConfigValidator] = None,
        reporter: Optional[ProgressReporter] = None,
        which: Optional[Callable[[str], Optional[str]]] = None,
        dry_run: bool = False,
    ) -> None:
        self.config = copy.deepcopy(config)
        self.work_dir = Path(work_dir)
        self.output_dir = Path(output_dir)
        self.dry_run = dry_run
        self.runner = runner or SubprocessRunner(dry_run=dry_run)
        self.validator = validator or ConfigValidator()
        self.reporter = reporter or ProgressReporter(verbosity=self.config.build_options.verbosity)
        self.ctx = BuildContext(
            config=self.config,
            work_dir=self.work_dir,
            output_dir=self.output_dir,
            runner=self.runner,
            reporter=self.reporter,
            which=which or shutil.which,
        )
        self.cache = cache or MemoryPackageCache(self.ctx.cache_dir, self.config.architecture)
        self.bootloader_status: Optional[BootloaderStatus] = None

    def _stages(self) -> List[Tuple[str, str, Callable[[], Awaitable[None]]]]:
        handlers = {
            "directories": self.setup_directories,
            "rootfs": self.build_rootfs,
            "kernel": self.install_kernel,
            "packages": self.install_packages,
            "configure": self.configure_system,
            "branding": self.apply_branding,
            "bootloader": self.configure_bootloader,
            "iso": self.create_iso,
        }
        return [(key, title, handlers[key]) for key, title in STAGES]

    async def build(self) -> BuildResult:
        validation = self.validator.validate(self.config)
        for warning in validation.warnings:
            self.reporter.warning(f"{warning.field}: {warning.message}")
        if not validation.is_valid:
            for error in validation.errors:
                self.reporter.error(f"[{error.severity}] {error.field}: {error.message}")
            raise ValidationFailed(validation)
        for error in validation.errors:
            self.reporter.warning(f"Ignoring [{error.severity}] {error.field}: {error.message}")

        progress = BuildProgress.for_distro(self.config.name)
        self.reporter.note(f"Starting Linux distribution build: {self.config.name} ({progress.build_id})")

        timeout = self.config.build_options.timeout_minutes
        deadline = progress.elapsed() + timeout * SECONDS_PER_MINUTE if timeout is not None else None

        for number, (key, title, handler) in enumerate(self._stages(), start=1):
            progress.start_step(key, number)
            self.reporter.step(progress, title)
            try:
                if deadline is None:
                    await handler()
                else:
                    await asyncio.wait_for(handler(), timeout=max(deadline - progress.elapsed(), 0))
            except asyncio.TimeoutError:
                progress.complete_step(False)
                failure = StageError("timeout", f"Build exceeded the {timeout} minute timeout")
                return await self._fail(validation, progress, key, failure)
            except StageError as exc:
                progress.complete_step(False)
                return await self._fail(validation, progress, key, exc)
            except CommandError as exc:
                progress.complete_step(False)
                failure = StageError.from_command_error(STAGE_ERROR_TYPES[key], "Command failed", exc)
                return await self._fail(validation, progress, key, failure)
            except (OSError, ValueError) as exc:
                progress.complete_step(False)
                return await self._fail(validation, progress, key, StageError(STAGE_ERROR_TYPES[key], str(exc)))
            progress.complete_step(True)

        iso_path = self.ctx.iso_path
        iso_size = iso_path.stat().st_size if iso_path.exists() else 0
        size_warning = self._size_warning(iso_size)
        if size_warning:
            self.reporter.warning(size_warning)
        if not self.config.build_options.preserve_cache:
            await self.cache.clear()

        elapsed = progress.elapsed()
        self.reporter.note(
            f"Successfully built {iso_path} ({iso_size / (1024 * 1024):.1f} MB) in {elapsed:.1f}s"
        )
        return BuildResult(
            success=True,
            validation=validation,
            progress=progress,
            elapsed=elapsed,
            iso_path=iso_path,
            iso_size=iso_size,
            size_warning=size_warning,
        )

    async def _fail(
        self,
        validation: ValidationResult,
        progress: BuildProgress,
        step: str,
        failure: StageError,
    ) -> BuildResult:
        error = BuildError(
            step=step,
            error_type=failure.error_type,
            message=failure.message,
            build_id=progress.build_id,
            command=failure.command,
            stdout=failure.stdout,
            stderr=failure.stderr,
        )
        self.reporter.error(error.describe())
        if self.config.build_options.cleanup_on_failure and self.work_dir.exists():
            self.reporter.note(f"Removing work directory {self.work_dir}")
            shutil.rmtree(self.work_dir, ignore_errors=True)
        if not self.config.build_options.preserve_cache:
            await self.cache.clear()
        return BuildResult(
            success=False,
            validation=validation,
            progress=progress,
            elapsed=progress.elapsed(),
            error=error,
        )

    def _size_warning(self, iso_size: int) -> Optional[str]:
        limit = self.config.filesystem.size_limit
        if limit is None:
            return None
        size_mb = iso_size / (1024 * 1024)
        if size_mb > limit:
            return f"ISO size {size_mb:.1f} MB exceeds the configured limit of {limit} MB"
        return None

    async def setup_directories(self) -> None:
        ctx = self.ctx
        # a fresh rootfs has none of the previously cached packages
        await self.cache.clear()
        try:
            if self.work_dir.exists() and self.dry_run:
                self.reporter.note(f"Dry run: reusing existing work directory {self.work_dir}")
            elif self.work_dir.exists():
                self.reporter.note(f"Cleaning up existing work directory {self.work_dir}")
                shutil.rmtree(self.work_dir)
            for directory in (self.work_dir, self.output_dir, ctx.rootfs_dir, ctx.boot_dir, ctx.iso_dir):
                directory.mkdir(parents=True, exist_ok=True)
                self.reporter.detail(f"Created directory: {directory}")
        except OSError as exc:
            raise StageError("filesystem", f"Failed to prepare build directories: {exc}") from exc

    async def build_rootfs(self) -> None:
        base = self.config.base_system
        self.reporter.note(f"Building {base.value} base system")
        await BOOTSTRAPPERS[base](self.ctx)

    async def install_kernel(self) -> None:
        base = self.config.base_system
        manager = package_manager_for(base)
        if manager is None:
            self.reporter.warning(f"No package manager for {base.value}; kernel must be installed manually")
            return
        try:
            package = kernel_package(self.config.kernel, base, self.config.architecture)
        except ValueError as exc:
            raise StageError("kernel_installation", str(exc)) from exc
        self.reporter.note(f"Installing kernel package: {package}")

        rootfs = self.ctx.rootfs_dir
        refresh = await self.runner.run(chroot_argv(base, rootfs, manager.refresh), check=False)
        if not refresh.ok:
            self.reporter.warning("Failed to update package database")
        result = await self.runner.run(chroot_argv(base, rootfs, manager.install_argv([package])), check=False)
        if not result.ok:
            if any(marker in result.stderr for marker in NON_FATAL_KERNEL_MARKERS):
                self.reporter.note(f"Kernel package {package} already present")
                return
            raise StageError.from_result("kernel_installation", "Kernel installation failed", result)

    async def install_packages(self) -> None:
        base = self.config.base_system
        essential, desktop, additional = package_groups(self.config)
        if package_manager_for(base) is None:
            if essential or desktop or additional:
                self.reporter.warning(f"No package manager for {base.value}; skipping package installation")
            return
        self.write_repositories()

        if not essential:
            self.reporter.note("Skipping essential packages (already installed in base system)")
        options = self.config.build_options
        rootfs = self.ctx.rootfs_dir
        try:
            if options.parallel_builds:
                installer = BatchPackageInstaller(
                    self.runner,
                    base,
                    cache=self.cache,
                    max_jobs=options.max_parallel_jobs,
                    use_cache=options.preserve_cache,
                    reporter=self.reporter,
                )
                await installer.install(rootfs, [*essential, *desktop, *additional])
            else:
                await install_sequential(self.runner, base, rootfs, [essential, desktop, additional], self.reporter)
        except CommandError as exc:
            raise StageError.from_command_error("package_installation", "Package installation failed", exc) from exc

    def write_repositories(self) -> None:
        repositories = self.config.packages.custom_repositories
        if not repositories:
            return
        rootfs = self.ctx.rootfs_dir
        base = self.config.base_system
        if base is BaseSystem.ARCH:
            pacman_conf = rootfs / "etc/pacman.conf"
            pacman_conf.parent.mkdir(parents=True, exist_ok=True)
            with pacman_conf.open("a", encoding="utf-8") as handle:
                for repo in repositories:
                    handle.write(f"\n[{repo.name}]\nServer = {repo.url}\n")
        elif base in (BaseSystem.DEBIAN, BaseSystem.UBUNTU):
            sources = rootfs / "etc/apt/sources.list.d"
            sources.mkdir(parents=True, exist_ok=True)
            for repo in repositories:
                (sources / f"{repo.name}.list").write_text(f"deb {repo.url}\n", encoding="utf-8")
        else:
            self.reporter.warning(f"Custom repositories are not supported for {base.value}; ignoring")
            return
        self.reporter.note(f"Configured {len(repositories)} custom repositories")

    async def configure_system(self) -> None:
        rootfs = self.ctx.rootfs_dir
        name = self.config.name
        etc = rootfs / "etc"
        try:
            etc.mkdir(parents=True, exist_ok=True)
            (etc / "hostname").write_text(f"{name}\n", encoding="utf-8")
            (etc / "hosts").write_text(
                f"127.0.0.1\tlocalhost\n::1\t\tlocalhost\n127.0.1.1\t{name}\n", encoding="utf-8"
            )
            (etc / "locale.conf").write_text(f"LANG={self.config.user_config.locale}\n", encoding="utf-8")
            if self.config.kernel.modules:
                modules_dir = etc / "modules-load.d"
                modules_dir.mkdir(parents=True, exist_ok=True)
                (modules_dir / f"{name}.conf").write_text(
                    "\n".join(self.config.kernel.modules) + "\n", encoding="utf-8"
                )
        except OSError as exc:
            raise StageError("configuration", f"Failed to write system configuration: {exc}") from exc

        if self.config.base_system is BaseSystem.SCRATCH:
            return
        for service in SYSTEMD_SERVICES:
            argv = chroot_argv(self.config.base_system, rootfs, ["systemctl", "enable", service])
            try:
                result = await self.runner.run(argv, check=False)
            except OSError as exc:
                logger.info("Could not enable %s: %s", service, exc)
                continue
            if not result.ok:
                logger.info("Could not enable %s (may not exist on this base system)", service)

    async def apply_branding(self) -> None:
        branding = self.config.branding
        configured = [
            str(value) for value in (branding.logo, branding.wallpaper, branding.theme) if value
        ]
        if configured:
            self.reporter.detail(f"Branding assets configured: {', '.join(configured)}")

    async def configure_bootloader(self) -> None:
        rootfs_boot = self.ctx.rootfs_dir / "boot"
        try:
            for artifact in copy_kernel_artifacts(rootfs_boot, self.ctx.boot_dir):
                self.reporter.detail(f"Copied {artifact.name} to boot staging")
            self.bootloader_status = configure_bootloader(self.config, self.ctx.boot_dir)
        except OSError as exc:
            raise StageError("bootloader", f"Failed to configure bootloader: {exc}") from exc
        if self.bootloader_status is BootloaderStatus.UNSUPPORTED:
            self.reporter.warning(
                f"Bootloader configuration for {self.config.bootloader.bootloader.value} is not implemented yet"
            )

    async def create_iso(self) -> None:
        ctx = self.ctx
        iso_dir = ctx.iso_dir
        live_dir = iso_dir / "live"
        live_dir.mkdir(parents=True, exist_ok=True)

        self.reporter.note("Creating SquashFS filesystem...")
        squashfs = [
            "mksquashfs", str(ctx.rootfs_dir), str(live_dir / "filesystem.squashfs"), "-e", "boot",
        ]
        compression = self.config.filesystem.compression
        if compression is not CompressionType.NONE:
            squashfs += ["-comp", compression.value]
        else:
            squashfs += ["-noI", "-noD", "-noF", "-noX"]
        await ctx.run("iso_creation", "mksquashfs failed", squashfs)

        try:
            iso_boot = iso_dir / "boot"
            iso_boot.mkdir(parents=True, exist_ok=True)
            rootfs_boot = ctx.rootfs_dir / "boot"
            if rootfs_boot.exists():
                for entry in sorted(rootfs_boot.iterdir()):
                    if entry.is_file() and entry.name.startswith(("vmlinuz", "initramfs")):
                        shutil.copyfile(entry, iso_boot / entry.name)
                        self.reporter.detail(f"Copied: {entry} -> {iso_boot / entry.name}")
            for entry in sorted(ctx.boot_dir.iterdir()):
                if entry.is_file():
                    shutil.copyfile(entry, iso_boot / entry.name)
            if self.config.bootloader.bootloader is Bootloader.SYSLINUX:
                copy_syslinux_assets(iso_dir)
        except OSError as exc:
            raise StageError("iso_creation", f"Failed to stage boot files: {exc}") from exc

        self.reporter.note("Creating ISO with xorriso...")
        await ctx.run("iso_creation", "xorriso failed", xorriso_argv(self.config, iso_dir, ctx.iso_path))


def render_build_plan(config: DistroConfig, work_dir: Path, output_dir: Path) -> List[str]:
    """Stage titles and the main external commands a build would run."""
    rootfs = Path(work_dir) / "rootfs"
    iso_dir = Path(work_dir) / "iso"
    iso_path = Path(output_dir) / config.iso_filename
    lines: List[str] = []
    for number, (key, title) in enumerate(STAGES, start=1):
        lines.append(f"[{number}/{len(STAGES)}] {title}")
        if key == "rootfs":
            lines.extend(f"    $ {command}" for command in bootstrap_command_preview(config.base_system, config.architecture, rootfs))
        elif key == "kernel" and package_manager_for(config.base_system):
            try:
                package = kernel_package(config.kernel, config.base_system, config.architecture)
            except ValueError:
                package = "<unset>"
            lines.append(f"    install kernel package {package}")
        elif key == "packages":
            essential, desktop, additional = package_groups(config)
            mode = "parallel batches" if config.build_options.parallel_builds else "sequential groups"
            lines.append(f"    {len(essential) + len(desktop) + len(additional)} package(s) in {mode}")
        elif key == "iso":
            lines.append(f"    $ mksquashfs {rootfs} {iso_dir}/live/filesystem.squashfs -e boot")
            lines.append("    $ " + " ".join(xorriso_argv(config, iso_dir, iso_path)))
    return lines


def package_groups(config: DistroConfig) -> Tuple[List[str], List[str], List[str]]:
    """Essential, desktop and additional packages, in install order."""
    packages = config.packages
    essential = filter_bootstrap_packages(config.base_system, packages.essential)
    desktop = desktop_packages(packages.desktop_environment, packages.custom_desktop)
    additional = list(packages.additional_packages)
    if config.build_options.enable_ccache and "ccache" not in additional:
        additional.append("ccache")
    return essential, desktop, additional
