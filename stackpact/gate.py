"""
Production authorization toggle.
"""

import logging
from pathlib import Path
from typing import Optional

from .config import Settings, env_flag

logger = logging.getLogger(__name__)

ARMED_ENV = "STACKPACT_ARMED"


class AuthorizationToggle:
    """External, read-only signal that arms production apply.

    The gate is open when the sentinel file exists or STACKPACT_ARMED is
    truthy. The toggle is only ever read, never written.
    """

    def __init__(self, sentinel: Optional[Path] = None, env_var: str = ARMED_ENV):
        self.sentinel = Path(sentinel) if sentinel else None
        self.env_var = env_var

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthorizationToggle":
        return cls(sentinel=settings.arm_file)

    def is_open(self) -> bool:
        if env_flag(self.env_var):
            logger.info(f"Production gate armed via {self.env_var}")
            return True
        if self.sentinel is not None and self.sentinel.exists():
            logger.info(f"Production gate armed via sentinel {self.sentinel}")
            return True
        return False

    def describe(self) -> str:
        where = f"sentinel {self.sentinel}" if self.sentinel else "no sentinel"
        return f"{self.env_var} or {where}"


class StaticToggle(AuthorizationToggle):
    """Fixed toggle value, for embedding and tests."""

    def __init__(self, armed: bool):
        super().__init__(sentinel=None)
        self.armed = armed

    def is_open(self) -> bool:
        return self.armed

    def describe(self) -> str:
        return f"static({'armed' if self.armed else 'closed'})"
