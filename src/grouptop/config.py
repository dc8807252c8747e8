"""Runtime configuration for grouptop."""

import logging
from dataclasses import dataclass
from pathlib import Path

from grouptop.gpu import DEFAULT_COMMAND, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

LOGIN_DEFS = Path("/etc/login.defs")
DEFAULT_UID_MIN = 1000
DEFAULT_UID_MAX = 60000
DEFAULT_INTERVAL = 1.0
MIN_INTERVAL = 0.1


def read_uid_range(path: Path | str = LOGIN_DEFS) -> tuple[int, int]:
    """
    Read the normal-user uid range from login.defs.

    Missing file or keys fall back to the usual Linux defaults.
    """
    uid_min = DEFAULT_UID_MIN
    uid_max = DEFAULT_UID_MAX
    try:
        text = Path(path).read_text()
    except OSError:
        logger.debug("%s not readable, using default uid range", path)
        return uid_min, uid_max

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        try:
            value = int(parts[1])
        except ValueError:
            continue
        if parts[0] == "UID_MIN":
            uid_min = value
        elif parts[0] == "UID_MAX":
            uid_max = value
    return uid_min, uid_max


@dataclass(slots=True)
class MonitorConfig:
    """Settings for one monitoring session."""

    interval: float = DEFAULT_INTERVAL
    uid_min: int | None = None
    uid_max: int | None = None
    gpu_enabled: bool = True
    gpu_command: str = DEFAULT_COMMAND
    gpu_timeout: float = DEFAULT_TIMEOUT
    show_all: bool = False
    login_defs: Path = LOGIN_DEFS

    def __post_init__(self) -> None:
        self.interval = max(MIN_INTERVAL, self.interval)

    def resolve_uid_range(self) -> tuple[int, int]:
        """Explicit bounds win; anything unset comes from login.defs."""
        if self.uid_min is not None and self.uid_max is not None:
            return self.uid_min, self.uid_max
        uid_min, uid_max = read_uid_range(self.login_defs)
        return (
            self.uid_min if self.uid_min is not None else uid_min,
            self.uid_max if self.uid_max is not None else uid_max,
        )
