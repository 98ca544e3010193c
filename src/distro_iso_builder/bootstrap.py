"""Base system bootstrap procedures and kernel package selection."""
from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Awaitable, Callable, Dict, List

from .config import BaseSystem, KernelConfig, KernelType
from .context import BuildContext

logger = logging.getLogger(__name__)


DEBIAN_ARCHITECTURES = {
    "x86_64": "amd64",
    "i686": "i386",
    "aarch64": "arm64",
    "armv7h": "armhf",
}

DEBIAN_MIRROR = "http://deb.debian.org/debian/"
DEBIAN_RELEASE = "stable"
UBUNTU_MIRROR = "http://archive.ubuntu.com/ubuntu/"
UBUNTU_RELEASE = "jammy"
FEDORA_RELEASEVER = "40"
CENTOS_RELEASEVER = "9"
OPENSUSE_REPO = "http://download.opensuse.org/distribution/leap/15.6/repo/oss/"
ALPINE_REPO = "http://dl-cdn.alpinelinux.org/alpine/latest-stable/main"

HOST_MIRRORLIST = Path("/etc/pacman.d/mirrorlist")

SCRATCH_DIRECTORIES = [
    "bin", "boot", "dev", "etc", "home", "lib", "lib64", "mnt",
    "opt", "proc", "root", "run", "sbin", "srv", "sys", "tmp",
    "usr", "var", "usr/bin", "usr/lib", "usr/sbin", "var/log",
]

# Package manager output that means the kernel is already in place.
NON_FATAL_KERNEL_MARKERS = ("is up to date", "target not found")

ARCH_KERNELS = {
    KernelType.VANILLA: "linux",
    KernelType.LTS: "linux-lts",
    KernelType.HARDENED: "linux-hardened",
    KernelType.REALTIME: "linux-rt",
}

DISTRO_KERNELS: Dict[BaseSystem, Dict[KernelType, str]] = {
    BaseSystem.DEBIAN: {
        KernelType.VANILLA: "linux-image-{arch}",
        KernelType.REALTIME: "linux-image-rt-{arch}",
    },
    BaseSystem.UBUNTU: {
        KernelType.VANILLA: "linux-generic",
        KernelType.LTS: "linux-generic",
        KernelType.REALTIME: "linux-realtime",
    },
    BaseSystem.FEDORA: {KernelType.VANILLA: "kernel", KernelType.REALTIME: "kernel-rt"},
    BaseSystem.CENTOS: {KernelType.VANILLA: "kernel", KernelType.REALTIME: "kernel-rt"},
    BaseSystem.OPENSUSE: {KernelType.VANILLA: "kernel-default", KernelType.REALTIME: "kernel-rt"},
    BaseSystem.ALPINE: {KernelType.VANILLA: "linux-lts", KernelType.LTS: "linux-lts", KernelType.HARDENED: "linux-virt"},
}


def kernel_package(kernel: KernelConfig, base_system: BaseSystem, architecture: str) -> str:
    """Map the configured kernel type to a package name for ``base_system``."""
    if kernel.kernel_type is KernelType.CUSTOM:
        if not kernel.custom_package:
            raise ValueError("Custom kernel selected without a package name")
        return kernel.custom_package
    if base_system in (BaseSystem.ARCH, BaseSystem.SCRATCH):
        return ARCH_KERNELS[kernel.kernel_type]
    table = DISTRO_KERNELS[base_system]
    template = table.get(kernel.kernel_type, table[KernelType.VANILLA])
    return template.format(arch=DEBIAN_ARCHITECTURES.get(architecture, architecture))


Bootstrapper = Callable[[BuildContext], Awaitable[None]]


async def bootstrap_arch(ctx: BuildContext) -> None:
    ctx.require_tools("bootstrap", "pacstrap", "arch-chroot")
    rootfs = ctx.rootfs_dir
    rootfs.mkdir(parents=True, exist_ok=True)
    ctx.reporter.note(f"Running: pacstrap -c {rootfs} base linux linux-firmware")
    await ctx.run("bootstrap", "pacstrap failed", ["pacstrap", "-c", str(rootfs), "base", "linux", "linux-firmware"])

    if HOST_MIRRORLIST.exists():
        target = rootfs / "etc/pacman.d/mirrorlist"
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(HOST_MIRRORLIST, target)
        ctx.reporter.detail("Copied mirrorlist to chroot")


async def _debootstrap(ctx: BuildContext, release: str, mirror: str) -> None:
    ctx.require_tools("bootstrap", "debootstrap")
    arch = DEBIAN_ARCHITECTURES.get(ctx.config.architecture, ctx.config.architecture)
    await ctx.run(
        "bootstrap",
        "debootstrap failed",
        ["debootstrap", "--arch", arch, release, str(ctx.rootfs_dir), mirror],
    )


async def bootstrap_debian(ctx: BuildContext) -> None:
    await _debootstrap(ctx, DEBIAN_RELEASE, DEBIAN_MIRROR)


async def bootstrap_ubuntu(ctx: BuildContext) -> None:
    await _debootstrap(ctx, UBUNTU_RELEASE, UBUNTU_MIRROR)


async def _dnf_installroot(ctx: BuildContext, releasever: str) -> None:
    ctx.require_tools("bootstrap", "dnf")
    await ctx.run(
        "bootstrap",
        "dnf bootstrap failed",
        [
            "dnf", "-y",
            f"--installroot={ctx.rootfs_dir}",
            f"--releasever={releasever}",
            f"--forcearch={ctx.config.architecture}",
            "install", "basesystem", "dnf", "systemd",
        ],
    )


async def bootstrap_fedora(ctx: BuildContext) -> None:
    await _dnf_installroot(ctx, FEDORA_RELEASEVER)


async def bootstrap_centos(ctx: BuildContext) -> None:
    await _dnf_installroot(ctx, CENTOS_RELEASEVER)


async def bootstrap_opensuse(ctx: BuildContext) -> None:
    ctx.require_tools("bootstrap", "zypper")
    root = str(ctx.rootfs_dir)
    await ctx.run(
        "bootstrap",
        "zypper repository setup failed",
        ["zypper", "--root", root, "--non-interactive", "addrepo", OPENSUSE_REPO, "repo-oss"],
    )
    await ctx.run(
        "bootstrap",
        "zypper bootstrap failed",
        [
            "zypper", "--root", root, "--non-interactive", "--gpg-auto-import-keys",
            "install", "--no-recommends", "patterns-base-minimal_base", "zypper", "systemd",
        ],
    )


async def bootstrap_alpine(ctx: BuildContext) -> None:
    ctx.require_tools("bootstrap", "apk")
    await ctx.run(
        "bootstrap",
        "apk bootstrap failed",
        [
            "apk", "--root", str(ctx.rootfs_dir), "--initdb",
            "--arch", ctx.config.architecture,
            "-X", ALPINE_REPO, "-U", "--allow-untrusted",
            "add", "alpine-base",
        ],
    )


async def bootstrap_scratch(ctx: BuildContext) -> None:
    for directory in SCRATCH_DIRECTORIES:
        (ctx.rootfs_dir / directory).mkdir(parents=True, exist_ok=True)
    ctx.reporter.warning("Scratch build only creates the directory tree; a toolchain must be set up manually")


BOOTSTRAPPERS: Dict[BaseSystem, Bootstrapper] = {
    BaseSystem.ARCH: bootstrap_arch,
    BaseSystem.DEBIAN: bootstrap_debian,
    BaseSystem.UBUNTU: bootstrap_ubuntu,
    BaseSystem.FEDORA: bootstrap_fedora,
    BaseSystem.CENTOS: bootstrap_centos,
    BaseSystem.OPENSUSE: bootstrap_opensuse,
    BaseSystem.ALPINE: bootstrap_alpine,
    BaseSystem.SCRATCH: bootstrap_scratch,
}


def bootstrap_command_preview(base_system: BaseSystem, architecture: str, rootfs: Path) -> List[str]:
    """The principal bootstrap command for ``base_system``, for plan previews."""
    arch = DEBIAN_ARCHITECTURES.get(architecture, architecture)
    previews = {
        BaseSystem.ARCH: f"pacstrap -c {rootfs} base linux linux-firmware",
        BaseSystem.DEBIAN: f"debootstrap --arch {arch} {DEBIAN_RELEASE} {rootfs} {DEBIAN_MIRROR}",
        BaseSystem.UBUNTU: f"debootstrap --arch {arch} {UBUNTU_RELEASE} {rootfs} {UBUNTU_MIRROR}",
        BaseSystem.FEDORA: f"dnf -y --installroot={rootfs} --releasever={FEDORA_RELEASEVER} install basesystem dnf systemd",
        BaseSystem.CENTOS: f"dnf -y --installroot={rootfs} --releasever={CENTOS_RELEASEVER} install basesystem dnf systemd",
        BaseSystem.OPENSUSE: f"zypper --root {rootfs} --non-interactive install patterns-base-minimal_base zypper systemd",
        BaseSystem.ALPINE: f"apk --root {rootfs} --initdb --arch {architecture} add alpine-base",
        BaseSystem.SCRATCH: f"mkdir -p {rootfs}/{{bin,etc,usr,var,...}}",
    }
    return [previews[base_system]]
