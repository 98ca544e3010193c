from pathlib import Path

import pytest

from conftest import FakeRunner, all_tools
from distro_iso_builder import bootstrap
from distro_iso_builder.config import BaseSystem, DistroConfig, KernelConfig, KernelType
from distro_iso_builder.context import BuildContext, StageError
from distro_iso_builder.progress import ProgressReporter


def make_context(tmp_path: Path, base: BaseSystem, which=all_tools, architecture="x86_64") -> BuildContext:
    return BuildContext(
        config=DistroConfig(base_system=base, architecture=architecture),
        work_dir=tmp_path / "work",
        output_dir=tmp_path / "out",
        runner=FakeRunner(),
        reporter=ProgressReporter(callback=lambda line: None),
        which=which,
    )


@pytest.mark.parametrize(
    "kernel_type, base, expected",
    [
        (KernelType.VANILLA, BaseSystem.ARCH, "linux"),
        (KernelType.HARDENED, BaseSystem.ARCH, "linux-hardened"),
        (KernelType.REALTIME, BaseSystem.SCRATCH, "linux-rt"),
        (KernelType.VANILLA, BaseSystem.DEBIAN, "linux-image-amd64"),
        (KernelType.HARDENED, BaseSystem.DEBIAN, "linux-image-amd64"),
        (KernelType.LTS, BaseSystem.UBUNTU, "linux-generic"),
        (KernelType.REALTIME, BaseSystem.FEDORA, "kernel-rt"),
        (KernelType.LTS, BaseSystem.OPENSUSE, "kernel-default"),
        (KernelType.HARDENED, BaseSystem.ALPINE, "linux-virt"),
    ],
)
def test_kernel_package(kernel_type, base, expected):
    assert bootstrap.kernel_package(KernelConfig(kernel_type=kernel_type), base, "x86_64") == expected


def test_custom_kernel_package():
    kernel = KernelConfig(kernel_type=KernelType.CUSTOM, custom_package="linux-zen")
    assert bootstrap.kernel_package(kernel, BaseSystem.DEBIAN, "x86_64") == "linux-zen"
    with pytest.raises(ValueError):
        bootstrap.kernel_package(KernelConfig(kernel_type=KernelType.CUSTOM), BaseSystem.ARCH, "x86_64")


def test_every_base_system_has_a_bootstrapper():
    assert set(bootstrap.BOOTSTRAPPERS) == set(BaseSystem)


@pytest.mark.asyncio
async def test_arch_copies_host_mirrorlist(tmp_path: Path, monkeypatch):
    mirrorlist = tmp_path / "mirrorlist"
    mirrorlist.write_text("Server = https://mirror.example/$repo/os/$arch\n")
    monkeypatch.setattr(bootstrap, "HOST_MIRRORLIST", mirrorlist)
    ctx = make_context(tmp_path, BaseSystem.ARCH)

    await bootstrap.bootstrap_arch(ctx)

    assert ctx.runner.calls == [["pacstrap", "-c", str(ctx.rootfs_dir), "base", "linux", "linux-firmware"]]
    copied = ctx.rootfs_dir / "etc" / "pacman.d" / "mirrorlist"
    assert copied.read_text() == mirrorlist.read_text()


@pytest.mark.asyncio
async def test_missing_tool_fails_before_running(tmp_path: Path):
    ctx = make_context(tmp_path, BaseSystem.FEDORA, which=lambda tool: None)
    with pytest.raises(StageError) as excinfo:
        await bootstrap.bootstrap_fedora(ctx)
    assert excinfo.value.error_type == "bootstrap"
    assert "dnf" in excinfo.value.message
    assert ctx.runner.calls == []


@pytest.mark.asyncio
async def test_ubuntu_debootstrap_arguments(tmp_path: Path):
    ctx = make_context(tmp_path, BaseSystem.UBUNTU, architecture="aarch64")
    await bootstrap.bootstrap_ubuntu(ctx)
    assert ctx.runner.calls == [
        ["debootstrap", "--arch", "arm64", "jammy", str(ctx.rootfs_dir), "http://archive.ubuntu.com/ubuntu/"]
    ]


@pytest.mark.asyncio
async def test_fedora_and_centos_use_installroot(tmp_path: Path):
    for base, releasever in ((BaseSystem.FEDORA, "40"), (BaseSystem.CENTOS, "9")):
        ctx = make_context(tmp_path, base)
        await bootstrap.BOOTSTRAPPERS[base](ctx)
        argv = ctx.runner.calls[0]
        assert f"--installroot={ctx.rootfs_dir}" in argv
        assert f"--releasever={releasever}" in argv


@pytest.mark.asyncio
async def test_opensuse_adds_repository_first(tmp_path: Path):
    ctx = make_context(tmp_path, BaseSystem.OPENSUSE)
    await bootstrap.bootstrap_opensuse(ctx)
    assert [call[4] for call in ctx.runner.calls] == ["addrepo", "--gpg-auto-import-keys"]


@pytest.mark.asyncio
async def test_alpine_initialises_database(tmp_path: Path):
    ctx = make_context(tmp_path, BaseSystem.ALPINE)
    await bootstrap.bootstrap_alpine(ctx)
    argv = ctx.runner.calls[0]
    assert "--initdb" in argv
    assert argv[-2:] == ["add", "alpine-base"]


@pytest.mark.asyncio
async def test_scratch_creates_skeleton(tmp_path: Path):
    ctx = make_context(tmp_path, BaseSystem.SCRATCH)
    await bootstrap.bootstrap_scratch(ctx)
    assert ctx.runner.calls == []
    for directory in ("etc", "usr/bin", "var/log"):
        assert (ctx.rootfs_dir / directory).is_dir()


def test_command_preview(tmp_path: Path):
    (line,) = bootstrap.bootstrap_command_preview(BaseSystem.DEBIAN, "x86_64", tmp_path)
    assert line.startswith("debootstrap --arch amd64 stable")
