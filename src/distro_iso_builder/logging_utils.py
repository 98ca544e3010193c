from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

DEFAULT_LOG_PATH = "logs/distro-iso-builder.log"
FALLBACK_LOG_NAME = "distro-iso-builder.log"

_CONFIGURED_ATTR = "_distro_iso_builder_log_path"


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = False,
) -> str:
    """Configure the root logger with a file handler and optional console output.

    The build log is always written to a file so failed external commands can
    be diagnosed afterwards. If ``log_path`` cannot be opened the log goes to
    ``./distro-iso-builder.log`` instead.

    Returns the path actually used. Calling this again is a no-op.
    """

    root = logging.getLogger()
    configured: Optional[str] = getattr(root, _CONFIGURED_ATTR, None)
    if configured is not None:
        return configured

    root.setLevel(level)
    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    chosen_path = log_path
    try:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler: logging.Handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        chosen_path = str(Path.cwd() / FALLBACK_LOG_NAME)
        file_handler = logging.FileHandler(chosen_path, encoding="utf-8")
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        root.addHandler(console)

    setattr(root, _CONFIGURED_ATTR, chosen_path)
    logging.getLogger(__name__).info("Logging initialized (requested=%s, actual=%s)", log_path, chosen_path)
    return chosen_path
