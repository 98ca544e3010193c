from pathlib import Path

from distro_iso_builder.bootloader import (
    BootloaderStatus,
    configure_bootloader,
    copy_kernel_artifacts,
    copy_syslinux_assets,
    render_syslinux_config,
    xorriso_argv,
)
from distro_iso_builder.config import Bootloader, BootloaderConfig, DistroConfig


def test_syslinux_menu():
    config = DistroConfig(name="TestOS", bootloader=BootloaderConfig(timeout=5, default_entry="live"))
    menu = render_syslinux_config(config)
    assert menu.startswith("DEFAULT live\nTIMEOUT 50\n")
    assert "LABEL livefallback" in menu
    assert "APPEND root=/dev/disk/by-label/TestOS rw" in menu
    assert "INITRD /initramfs-linux-fallback.img" in menu


def test_configure_bootloader(tmp_path: Path):
    assert configure_bootloader(DistroConfig(), tmp_path) is BootloaderStatus.CONFIGURED
    assert (tmp_path / "syslinux.cfg").exists()

    for bootloader in (Bootloader.GRUB, Bootloader.SYSTEMD_BOOT, Bootloader.REFIND):
        other = tmp_path / bootloader.value
        other.mkdir()
        config = DistroConfig(bootloader=BootloaderConfig(bootloader=bootloader))
        assert configure_bootloader(config, other) is BootloaderStatus.UNSUPPORTED
        assert list(other.iterdir()) == []


def test_copy_kernel_artifacts(tmp_path: Path):
    rootfs_boot = tmp_path / "rootfs" / "boot"
    rootfs_boot.mkdir(parents=True)
    (rootfs_boot / "vmlinuz-linux").write_text("k")
    copied = copy_kernel_artifacts(rootfs_boot, tmp_path / "boot")
    assert copied == [tmp_path / "boot" / "vmlinuz-linux"]


def test_copy_syslinux_assets_skips_missing(tmp_path: Path):
    host = tmp_path / "host"
    host.mkdir()
    (host / "isolinux.bin").write_bytes(b"bin")
    iso_dir = tmp_path / "iso"
    (iso_dir / "boot").mkdir(parents=True)
    (iso_dir / "boot" / "syslinux.cfg").write_text("DEFAULT linux\n")

    copied = copy_syslinux_assets(iso_dir, [host / "isolinux.bin", host / "menu.c32"])
    assert copied == [iso_dir / "boot" / "isolinux" / "isolinux.bin"]
    assert (iso_dir / "boot" / "isolinux" / "isolinux.cfg").read_text() == "DEFAULT linux\n"


def test_xorriso_argv():
    config = DistroConfig(name="TestOS")
    argv = xorriso_argv(config, Path("/w/iso"), Path("/o/TestOS.iso"))
    assert argv[:3] == ["xorriso", "-as", "mkisofs"]
    assert argv[argv.index("-volid") + 1] == "TestOS"
    assert "-eltorito-boot" in argv
    assert argv[-3:] == ["-output", "/o/TestOS.iso", "/w/iso"]

    grub = DistroConfig(bootloader=BootloaderConfig(bootloader=Bootloader.GRUB))
    assert "-isohybrid-mbr" not in xorriso_argv(grub, Path("/w/iso"), Path("/o/x.iso"))
