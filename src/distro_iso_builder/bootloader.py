"""Boot menu generation and ISO mastering arguments."""
from __future__ import annotations

import enum
import logging
import shutil
import textwrap
from pathlib import Path
from typing import List

from .config import Bootloader, DistroConfig

logger = logging.getLogger(__name__)


SYSLINUX_DIR = Path("/usr/lib/syslinux/bios")
SYSLINUX_ASSETS = [
    SYSLINUX_DIR / "isolinux.bin",
    SYSLINUX_DIR / "ldlinux.c32",
    SYSLINUX_DIR / "libcom32.c32",
    SYSLINUX_DIR / "libutil.c32",
    SYSLINUX_DIR / "menu.c32",
]
ISOHYBRID_MBR = SYSLINUX_DIR / "isohdpfx.bin"

KERNEL_ARTIFACTS = [
    "vmlinuz-linux",
    "initramfs-linux.img",
    "initramfs-linux-fallback.img",
]


class BootloaderStatus(str, enum.Enum):
    CONFIGURED = "configured"
    UNSUPPORTED = "unsupported"


def render_syslinux_config(config: DistroConfig) -> str:
    """Boot menu with a default entry and a fallback initramfs entry."""
    default = config.bootloader.default_entry
    return textwrap.dedent(
        f"""\
        DEFAULT {default}
        TIMEOUT {config.bootloader.timeout}0

        LABEL {default}
            MENU LABEL {config.name}
            LINUX /vmlinuz-linux
            APPEND root=/dev/disk/by-label/{config.name} rw
            INITRD /initramfs-linux.img

        LABEL {default}fallback
            MENU LABEL {config.name} (fallback initramfs)
            LINUX /vmlinuz-linux
            APPEND root=/dev/disk/by-label/{config.name} rw
            INITRD /initramfs-linux-fallback.img
        """
    )


def copy_kernel_artifacts(rootfs_boot: Path, boot_dir: Path) -> List[Path]:
    copied: List[Path] = []
    boot_dir.mkdir(parents=True, exist_ok=True)
    for name in KERNEL_ARTIFACTS:
        source = rootfs_boot / name
        if source.exists():
            destination = boot_dir / name
            shutil.copyfile(source, destination)
            copied.append(destination)
    return copied


def configure_bootloader(config: DistroConfig, boot_dir: Path) -> BootloaderStatus:
    """Write the boot menu for the configured bootloader.

    Only Syslinux is generated; the others are reported as unsupported and
    leave ``boot_dir`` untouched.
    """
    if config.bootloader.bootloader is Bootloader.SYSLINUX:
        (boot_dir / "syslinux.cfg").write_text(render_syslinux_config(config), encoding="utf-8")
        return BootloaderStatus.CONFIGURED
    logger.warning("Bootloader %s configuration is not implemented", config.bootloader.bootloader.value)
    return BootloaderStatus.UNSUPPORTED


def copy_syslinux_assets(iso_dir: Path, assets: List[Path] = SYSLINUX_ASSETS) -> List[Path]:
    isolinux_dir = iso_dir / "boot" / "isolinux"
    isolinux_dir.mkdir(parents=True, exist_ok=True)
    copied: List[Path] = []
    for asset in assets:
        if asset.exists():
            destination = isolinux_dir / asset.name
            shutil.copyfile(asset, destination)
            copied.append(destination)
        else:
            logger.warning("Syslinux asset missing on host: %s", asset)

    syslinux_cfg = iso_dir / "boot" / "syslinux.cfg"
    if syslinux_cfg.exists():
        shutil.copyfile(syslinux_cfg, isolinux_dir / "isolinux.cfg")
    return copied


def xorriso_argv(config: DistroConfig, iso_dir: Path, iso_path: Path) -> List[str]:
    argv = [
        "xorriso", "-as", "mkisofs",
        "-iso-level", "3",
        "-full-iso9660-filenames",
        "-volid", config.name,
    ]
    if config.bootloader.bootloader is Bootloader.SYSLINUX:
        argv += [
            "-eltorito-boot", "boot/isolinux/isolinux.bin",
            "-eltorito-catalog", "boot/isolinux/boot.cat",
            "-no-emul-boot",
            "-boot-load-size", "4",
            "-boot-info-table",
            "-isohybrid-mbr", str(ISOHYBRID_MBR),
        ]
    argv += ["-output", str(iso_path), str(iso_dir)]
    return argv
