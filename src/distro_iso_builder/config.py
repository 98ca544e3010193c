"""Configuration models for custom distribution ISO builds."""
from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field, fields, is_dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


SUPPORTED_ARCHITECTURES = [
    "x86_64",
    "i686",
    "aarch64",
    "armv7h",
]


class ConfigError(ValueError):
    """Raised when a configuration file cannot be read or parsed."""


class BaseSystem(str, enum.Enum):
    ARCH = "arch"
    DEBIAN = "debian"
    UBUNTU = "ubuntu"
    FEDORA = "fedora"
    CENTOS = "centos"
    OPENSUSE = "opensuse"
    ALPINE = "alpine"
    SCRATCH = "scratch"


class DesktopEnvironment(str, enum.Enum):
    GNOME = "gnome"
    KDE = "kde"
    XFCE = "xfce"
    LXDE = "lxde"
    MATE = "mate"
    CINNAMON = "cinnamon"
    SWAY = "sway"
    I3 = "i3"
    CUSTOM = "custom"
    NONE = "none"


class KernelType(str, enum.Enum):
    VANILLA = "vanilla"
    LTS = "lts"
    HARDENED = "hardened"
    REALTIME = "realtime"
    CUSTOM = "custom"


class Bootloader(str, enum.Enum):
    GRUB = "grub"
    SYSTEMD_BOOT = "systemd-boot"
    SYSLINUX = "syslinux"
    REFIND = "refind"


class FilesystemType(str, enum.Enum):
    SQUASHFS = "squashfs"
    EXT4 = "ext4"
    BTRFS = "btrfs"
    XFS = "xfs"


class CompressionType(str, enum.Enum):
    GZIP = "gzip"
    XZ = "xz"
    ZSTD = "zstd"
    LZ4 = "lz4"
    NONE = "none"


class ProgressVerbosity(str, enum.Enum):
    QUIET = "quiet"
    NORMAL = "normal"
    VERBOSE = "verbose"


@dataclass(frozen=True, slots=True)
class Repository:
    name: str
    url: str
    key_url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PackageConfig:
    """Packages to install on top of the bootstrapped base system."""

    essential: List[str] = field(default_factory=list)
    desktop_environment: Optional[DesktopEnvironment] = None
    custom_desktop: str = ""
    additional_packages: List[str] = field(default_factory=list)
    custom_repositories: List[Repository] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class KernelConfig:
    kernel_type: KernelType = KernelType.VANILLA
    custom_package: str = ""
    custom_config: Optional[Path] = None
    modules: List[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class BootloaderConfig:
    bootloader: Bootloader = Bootloader.SYSLINUX
    timeout: int = 30
    default_entry: str = "linux"


@dataclass(frozen=True, slots=True)
class ColorScheme:
    primary: str = "#0078d4"
    secondary: str = "#005a9e"
    accent: str = "#00bcf2"


@dataclass(frozen=True, slots=True)
class BrandingConfig:
    logo: Optional[Path] = None
    wallpaper: Optional[Path] = None
    theme: Optional[str] = None
    colors: ColorScheme = field(default_factory=ColorScheme)


@dataclass(frozen=True, slots=True)
class FilesystemConfig:
    root_fs: FilesystemType = FilesystemType.SQUASHFS
    compression: CompressionType = CompressionType.XZ
    size_limit: Optional[int] = 4096


@dataclass(frozen=True, slots=True)
class BuildOptions:
    """Knobs for the build run itself rather than the produced system."""

    parallel_builds: bool = True
    max_parallel_jobs: Optional[int] = None
    cleanup_on_failure: bool = False
    preserve_cache: bool = True
    enable_ccache: bool = False
    verbosity: ProgressVerbosity = ProgressVerbosity.NORMAL
    timeout_minutes: Optional[int] = None


@dataclass(frozen=True, slots=True)
class StaticIpConfig:
    ip_address: str
    netmask: str
    gateway: str


@dataclass(frozen=True, slots=True)
class NetworkConfig:
    dhcp: bool = True
    static_ip: Optional[StaticIpConfig] = None
    dns_servers: List[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class UserConfig:
    default_user: str = "user"
    sudo_access: bool = True
    autologin: bool = False
    shell: str = "/bin/bash"
    locale: str = "en_US.UTF-8"
    timezone: str = "UTC"
    keyboard_layout: str = "us"
    network_config: NetworkConfig = field(default_factory=NetworkConfig)
    post_install_script: Optional[Path] = None


@dataclass(frozen=True, slots=True)
class ValidationConfig:
    strict_validation: bool = True
    max_iso_size_mb: int = 4096
    check_host_tools: bool = True


@dataclass(frozen=True, slots=True)
class DistroConfig:
    """Complete description of the distribution to build."""

    name: str = "MyLinux"
    version: str = "1.0"
    description: str = "A custom Linux distribution"
    architecture: str = "x86_64"
    base_system: BaseSystem = BaseSystem.ARCH
    packages: PackageConfig = field(default_factory=PackageConfig)
    kernel: KernelConfig = field(default_factory=KernelConfig)
    bootloader: BootloaderConfig = field(default_factory=BootloaderConfig)
    branding: BrandingConfig = field(default_factory=BrandingConfig)
    filesystem: FilesystemConfig = field(default_factory=FilesystemConfig)
    build_options: BuildOptions = field(default_factory=BuildOptions)
    user_config: UserConfig = field(default_factory=UserConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)

    @property
    def iso_filename(self) -> str:
        return f"{self.name}-{self.version}-{self.architecture}.iso"

    def to_dict(self) -> Dict[str, Any]:
        return _to_primitive(self)

    def with_updates(self, **updates: Any) -> "DistroConfig":
        return replace(self, **updates)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DistroConfig":
        if not isinstance(data, dict):
            raise ConfigError("configuration must be a mapping")
        return cls(
            name=str(data.get("name", "MyLinux")),
            version=str(data.get("version", "1.0")),
            description=str(data.get("description", "A custom Linux distribution")),
            architecture=str(data.get("architecture", "x86_64")),
            base_system=_enum(BaseSystem, data.get("base_system"), BaseSystem.ARCH),
            packages=_packages_from_dict(data.get("packages") or {}),
            kernel=_kernel_from_dict(data.get("kernel") or {}),
            bootloader=_bootloader_from_dict(data.get("bootloader") or {}),
            branding=_branding_from_dict(data.get("branding") or {}),
            filesystem=_filesystem_from_dict(data.get("filesystem") or {}),
            build_options=_build_options_from_dict(data.get("build_options") or {}),
            user_config=_user_from_dict(data.get("user_config") or {}),
            validation=_plain(ValidationConfig, data.get("validation") or {}),
        )


def default_config() -> DistroConfig:
    """The ``minimal`` template: an Arch based Xfce live system."""
    return DistroConfig(
        packages=PackageConfig(
            essential=["base", "linux", "linux-firmware", "networkmanager", "sudo"],
            desktop_environment=DesktopEnvironment.XFCE,
            additional_packages=["firefox", "vim", "git"],
        ),
    )


TEMPLATES = {
    "minimal": default_config,
}


def load_config(path: Path | str) -> DistroConfig:
    """Read a configuration from a JSON or YAML file."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    try:
        if suffix == ".json":
            raw = json.loads(text)
        elif suffix in {".yaml", ".yml"}:
            raw = yaml.safe_load(text) or {}
        else:
            raise ConfigError(f"Unsupported configuration format: {path.suffix or '<none>'}")
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc
    return DistroConfig.from_dict(raw)


def dump_config(config: DistroConfig, fmt: str = "yaml") -> str:
    data = config.to_dict()
    if fmt == "json":
        return json.dumps(data, indent=2)
    return yaml.safe_dump(data, sort_keys=False)


def save_config(config: DistroConfig, destination: Path | str) -> Path:
    destination = Path(destination)
    fmt = "json" if destination.suffix.lower() == ".json" else "yaml"
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(dump_config(config, fmt), encoding="utf-8")
    return destination


def _to_primitive(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_primitive(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_to_primitive(item) for item in value]
    return value


def _enum(kind: type[enum.Enum], value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, kind):
        return value
    try:
        return kind(str(value).lower())
    except ValueError as exc:
        choices = ", ".join(member.value for member in kind)
        raise ConfigError(f"Invalid {kind.__name__} {value!r} (expected one of: {choices})") from exc


def _path(value: Any) -> Optional[Path]:
    if value in (None, ""):
        return None
    return Path(value)


def _plain(kind: type, data: Dict[str, Any]) -> Any:
    known = {f.name for f in fields(kind)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown {kind.__name__} fields: {', '.join(sorted(unknown))}")
    return kind(**data)


def _packages_from_dict(data: Dict[str, Any]) -> PackageConfig:
    desktop = data.get("desktop_environment")
    return PackageConfig(
        essential=list(data.get("essential") or []),
        desktop_environment=None if desktop is None else _enum(DesktopEnvironment, desktop, None),
        custom_desktop=str(data.get("custom_desktop") or ""),
        additional_packages=list(data.get("additional_packages") or []),
        custom_repositories=[_plain(Repository, repo) for repo in data.get("custom_repositories") or []],
    )


def _kernel_from_dict(data: Dict[str, Any]) -> KernelConfig:
    return KernelConfig(
        kernel_type=_enum(KernelType, data.get("kernel_type"), KernelType.VANILLA),
        custom_package=str(data.get("custom_package") or ""),
        custom_config=_path(data.get("custom_config")),
        modules=list(data.get("modules") or []),
    )


def _bootloader_from_dict(data: Dict[str, Any]) -> BootloaderConfig:
    return BootloaderConfig(
        bootloader=_enum(Bootloader, data.get("bootloader"), Bootloader.SYSLINUX),
        timeout=int(data.get("timeout", 30)),
        default_entry=str(data.get("default_entry", "linux")),
    )


def _branding_from_dict(data: Dict[str, Any]) -> BrandingConfig:
    return BrandingConfig(
        logo=_path(data.get("logo")),
        wallpaper=_path(data.get("wallpaper")),
        theme=data.get("theme"),
        colors=_plain(ColorScheme, data.get("colors") or {}),
    )


def _filesystem_from_dict(data: Dict[str, Any]) -> FilesystemConfig:
    return FilesystemConfig(
        root_fs=_enum(FilesystemType, data.get("root_fs"), FilesystemType.SQUASHFS),
        compression=_enum(CompressionType, data.get("compression"), CompressionType.XZ),
        size_limit=data.get("size_limit", 4096),
    )


def _build_options_from_dict(data: Dict[str, Any]) -> BuildOptions:
    values = dict(data)
    values["verbosity"] = _enum(ProgressVerbosity, data.get("verbosity"), ProgressVerbosity.NORMAL)
    return _plain(BuildOptions, values)


def _user_from_dict(data: Dict[str, Any]) -> UserConfig:
    values = dict(data)
    network = dict(values.pop("network_config", None) or {})
    static_ip = network.pop("static_ip", None)
    values["network_config"] = NetworkConfig(
        dhcp=bool(network.get("dhcp", True)),
        static_ip=_plain(StaticIpConfig, static_ip) if static_ip else None,
        dns_servers=list(network.get("dns_servers") or []),
    )
    values["post_install_script"] = _path(values.get("post_install_script"))
    return _plain(UserConfig, values)
