"""Pre-build validation of a distribution configuration.

Every check runs regardless of what earlier checks found so the caller sees
all problems at once. The only side effects are read-only host queries (tool
lookups and path existence), which are injectable for tests.
"""
from __future__ import annotations

import enum
import ipaddress
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from .bootloader import ISOHYBRID_MBR, SYSLINUX_DIR
from .config import (
    SUPPORTED_ARCHITECTURES,
    BaseSystem,
    Bootloader,
    DesktopEnvironment,
    DistroConfig,
)
from .installer import BOOTSTRAP_PACKAGES


class Severity(enum.IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    def __str__(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True, slots=True)
class ValidationError:
    field: str
    message: str
    severity: Severity


@dataclass(frozen=True, slots=True)
class ValidationWarning:
    field: str
    message: str
    suggestion: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ValidationResult:
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[ValidationWarning] = field(default_factory=list)

    def errors_at_least(self, severity: Severity) -> List[ValidationError]:
        return [error for error in self.errors if error.severity >= severity]

    def summary(self) -> str:
        lines = [f"Configuration is {'valid' if self.is_valid else 'invalid'}"]
        for error in self.errors:
            lines.append(f"  [{error.severity}] {error.field}: {error.message}")
        for warning in self.warnings:
            line = f"  [Warning] {warning.field}: {warning.message}"
            if warning.suggestion:
                line += f" ({warning.suggestion})"
            lines.append(line)
        return "\n".join(lines)


BASE_SYSTEM_TOOLS = {
    BaseSystem.ARCH: ["pacstrap", "arch-chroot"],
    BaseSystem.DEBIAN: ["debootstrap"],
    BaseSystem.UBUNTU: ["debootstrap"],
    BaseSystem.FEDORA: ["dnf"],
    BaseSystem.CENTOS: ["dnf"],
    BaseSystem.OPENSUSE: ["zypper"],
    BaseSystem.ALPINE: ["apk"],
    BaseSystem.SCRATCH: [],
}
ISO_TOOLS = ["mksquashfs", "xorriso"]

BASE_SYSTEM_SIZE_MB = 800
PACKAGE_SIZE_MB = 25
HEAVY_DESKTOP_LIMIT_MB = 2000
DESKTOP_SIZES_MB = {
    DesktopEnvironment.GNOME: 1500,
    DesktopEnvironment.KDE: 2000,
    DesktopEnvironment.XFCE: 600,
    DesktopEnvironment.LXDE: 300,
    DesktopEnvironment.MATE: 700,
    DesktopEnvironment.CINNAMON: 900,
    DesktopEnvironment.SWAY: 150,
    DesktopEnvironment.I3: 100,
    DesktopEnvironment.CUSTOM: 500,
}

MIN_TIMEOUT_MINUTES = 30
MAX_TIMEOUT_MINUTES = 480

USERNAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]{0,31}")
TIMEZONE_RE = re.compile(r"UTC|GMT|[A-Z][A-Za-z_]+(/[A-Za-z0-9_+\-]+)+")


class ConfigValidator:
    def __init__(
        self,
        *,
        which: Callable[[str], Optional[str]] = shutil.which,
        path_exists: Callable[[Path], bool] = os.path.exists,
        cpu_count: Callable[[], Optional[int]] = os.cpu_count,
    ) -> None:
        self.which = which
        self.path_exists = path_exists
        self.cpu_count = cpu_count

    def validate(self, config: DistroConfig) -> ValidationResult:
        errors: List[ValidationError] = []
        warnings: List[ValidationWarning] = []

        for check in (
            self._check_identity,
            self._check_network,
            self._check_packages,
            self._check_size,
            self._check_tools,
            self._check_paths,
            self._check_user,
            self._check_build_options,
        ):
            check(config, errors, warnings)

        is_valid = not errors or not config.validation.strict_validation
        return ValidationResult(is_valid=is_valid, errors=errors, warnings=warnings)

    def _check_identity(self, config, errors, warnings) -> None:
        if not config.name.strip():
            errors.append(ValidationError("name", "Distribution name cannot be empty", Severity.CRITICAL))
        if not config.version.strip():
            errors.append(ValidationError("version", "Version cannot be empty", Severity.CRITICAL))
        if not config.architecture.strip():
            errors.append(ValidationError("architecture", "Architecture cannot be empty", Severity.CRITICAL))
        elif config.architecture not in SUPPORTED_ARCHITECTURES:
            errors.append(
                ValidationError(
                    "architecture",
                    f"Unsupported architecture '{config.architecture}' "
                    f"(supported: {', '.join(SUPPORTED_ARCHITECTURES)})",
                    Severity.CRITICAL,
                )
            )

    def _check_network(self, config, errors, warnings) -> None:
        network = config.user_config.network_config
        prefix = "user_config.network_config"
        static_ip = network.static_ip
        if static_ip is not None:
            if not _is_ip(static_ip.ip_address):
                errors.append(
                    ValidationError(
                        f"{prefix}.static_ip.ip_address",
                        f"Invalid IP address: {static_ip.ip_address}",
                        Severity.HIGH,
                    )
                )
            if not _is_netmask(static_ip.netmask):
                errors.append(
                    ValidationError(
                        f"{prefix}.static_ip.netmask",
                        f"Invalid netmask: {static_ip.netmask}",
                        Severity.HIGH,
                    )
                )
            if not _is_ip(static_ip.gateway):
                errors.append(
                    ValidationError(
                        f"{prefix}.static_ip.gateway",
                        f"Invalid gateway address: {static_ip.gateway}",
                        Severity.HIGH,
                    )
                )
            if network.dhcp:
                warnings.append(
                    ValidationWarning(
                        f"{prefix}.dhcp",
                        "Both DHCP and a static IP are configured; the static IP takes precedence",
                        "Disable DHCP when using a static address",
                    )
                )
        for index, server in enumerate(network.dns_servers):
            if not _is_ip(server):
                errors.append(
                    ValidationError(
                        f"{prefix}.dns_servers[{index}]",
                        f"Invalid DNS server address: {server}",
                        Severity.MEDIUM,
                    )
                )

    def _check_packages(self, config, errors, warnings) -> None:
        packages = config.packages
        seen = set()
        reported = set()
        for name in [*packages.essential, *packages.additional_packages]:
            if name in seen and name not in reported:
                reported.add(name)
                warnings.append(
                    ValidationWarning(
                        "packages",
                        f"Package '{name}' is listed more than once",
                        "Remove the duplicate entry",
                    )
                )
            seen.add(name)

        provided = BOOTSTRAP_PACKAGES.get(config.base_system, frozenset())
        redundant = [name for name in packages.essential if name in provided]
        if redundant:
            warnings.append(
                ValidationWarning(
                    "packages.essential",
                    f"Packages already installed by the base bootstrap: {', '.join(redundant)}",
                    "They will be skipped during package installation",
                )
            )

        if packages.desktop_environment is DesktopEnvironment.CUSTOM and not packages.custom_desktop.strip():
            errors.append(
                ValidationError(
                    "packages.custom_desktop",
                    "Custom desktop environment selected without a package name",
                    Severity.MEDIUM,
                )
            )

    def _check_size(self, config, errors, warnings) -> None:
        limit = config.filesystem.size_limit
        max_size = config.validation.max_iso_size_mb
        if limit is not None and limit > max_size:
            warnings.append(
                ValidationWarning(
                    "filesystem.size_limit",
                    f"Size limit of {limit} MB exceeds the maximum ISO size of {max_size} MB",
                    f"Lower the size limit to {max_size} MB or less",
                )
            )

        desktop = config.packages.desktop_environment
        if desktop in DESKTOP_SIZES_MB:
            package_count = len(config.packages.essential) + len(config.packages.additional_packages)
            estimate = BASE_SYSTEM_SIZE_MB + DESKTOP_SIZES_MB[desktop] + PACKAGE_SIZE_MB * package_count
            if estimate > HEAVY_DESKTOP_LIMIT_MB:
                warnings.append(
                    ValidationWarning(
                        "packages.desktop_environment",
                        f"Estimated image size of {estimate} MB with {desktop.value} is large",
                        "Consider a lighter desktop such as xfce or lxde",
                    )
                )

    def _check_tools(self, config, errors, warnings) -> None:
        if not config.validation.check_host_tools:
            return
        for tool in [*BASE_SYSTEM_TOOLS[config.base_system], *ISO_TOOLS]:
            if not self.which(tool):
                errors.append(
                    ValidationError(
                        "build_tools",
                        f"Required tool '{tool}' was not found in PATH",
                        Severity.CRITICAL,
                    )
                )

        bootloader = config.bootloader.bootloader
        if bootloader is Bootloader.SYSLINUX:
            for asset in (SYSLINUX_DIR / "isolinux.bin", ISOHYBRID_MBR):
                if not self.path_exists(asset):
                    warnings.append(
                        ValidationWarning(
                            "bootloader",
                            f"Syslinux asset not found: {asset}",
                            "Install the syslinux package on the build host",
                        )
                    )
        elif bootloader is Bootloader.GRUB and not self.which("grub-mkrescue"):
            warnings.append(
                ValidationWarning(
                    "bootloader",
                    "grub-mkrescue was not found in PATH",
                    "Install GRUB tools on the build host",
                )
            )

    def _check_paths(self, config, errors, warnings) -> None:
        optional_paths = [
            ("branding.logo", config.branding.logo),
            ("branding.wallpaper", config.branding.wallpaper),
            ("user_config.post_install_script", config.user_config.post_install_script),
        ]
        for name, path in optional_paths:
            if path is not None and not self.path_exists(path):
                warnings.append(ValidationWarning(name, f"File not found: {path}"))

        custom_config = config.kernel.custom_config
        if custom_config is not None and not self.path_exists(custom_config):
            errors.append(
                ValidationError(
                    "kernel.custom_config",
                    f"Custom kernel config not found: {custom_config}",
                    Severity.HIGH,
                )
            )

    def _check_user(self, config, errors, warnings) -> None:
        user = config.user_config
        if not USERNAME_RE.fullmatch(user.default_user):
            errors.append(
                ValidationError(
                    "user_config.default_user",
                    f"Invalid username '{user.default_user}': use 1-32 letters, digits, '_' or '-', "
                    "starting with a letter or '_'",
                    Severity.HIGH,
                )
            )
        elif user.default_user == "root":
            warnings.append(
                ValidationWarning(
                    "user_config.default_user",
                    "Using root as the default account",
                    "Create an unprivileged user with sudo access instead",
                )
            )
        if "." not in user.locale:
            warnings.append(
                ValidationWarning(
                    "user_config.locale",
                    f"Locale '{user.locale}' has no character set",
                    "Use a locale such as en_US.UTF-8",
                )
            )
        if not TIMEZONE_RE.fullmatch(user.timezone):
            warnings.append(
                ValidationWarning(
                    "user_config.timezone",
                    f"Timezone '{user.timezone}' does not look like a standard zone name",
                    "Use UTC or a Region/City name such as Europe/Berlin",
                )
            )

    def _check_build_options(self, config, errors, warnings) -> None:
        options = config.build_options
        cpus = self.cpu_count() or 1
        if options.max_parallel_jobs is not None and options.max_parallel_jobs > cpus * 2:
            warnings.append(
                ValidationWarning(
                    "build_options.max_parallel_jobs",
                    f"{options.max_parallel_jobs} parallel jobs is more than twice the {cpus} available CPUs",
                    f"Use at most {cpus * 2} jobs",
                )
            )
        timeout = options.timeout_minutes
        if timeout is not None:
            if timeout < 1:
                errors.append(
                    ValidationError(
                        "build_options.timeout_minutes",
                        f"Timeout must be at least 1 minute, got {timeout}",
                        Severity.HIGH,
                    )
                )
            elif timeout < MIN_TIMEOUT_MINUTES:
                warnings.append(
                    ValidationWarning(
                        "build_options.timeout_minutes",
                        f"Timeout of {timeout} minutes is likely too short for a full build",
                        "Use at least 60 minutes for a full build",
                    )
                )
            elif timeout > MAX_TIMEOUT_MINUTES:
                warnings.append(
                    ValidationWarning(
                        "build_options.timeout_minutes",
                        f"Timeout of {timeout} minutes is unusually long",
                        f"Consider a timeout of at most {MAX_TIMEOUT_MINUTES} minutes",
                    )
                )


def validate(config: DistroConfig) -> ValidationResult:
    return ConfigValidator().validate(config)


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value.strip())
    except ValueError:
        return False
    return True


def _is_netmask(value: str) -> bool:
    value = value.strip()
    prefix = value.lstrip("/")
    if prefix.isdigit():
        return 0 <= int(prefix) <= 128
    try:
        ipaddress.IPv4Network(f"0.0.0.0/{value}")
    except ValueError:
        return False
    return True
