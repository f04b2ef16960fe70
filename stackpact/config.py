"""
Runtime configuration for stackpact.

Settings come from STACKPACT_* environment variables, optionally overlaid by a
YAML policy file (``stackpact.yaml`` in the working directory or the path in
STACKPACT_CONFIG).
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

DEFAULT_EDGE_PORTS = (80, 443)
DEFAULT_BRIDGED_PREFIXES = (
    r"^/mnt/[a-zA-Z]/",
    r"^[a-zA-Z]:[\\/]",
    r"^/run/desktop/mnt/host/",
    r"^/host_mnt/",
    r"^//wsl(\$|\.localhost)/",
    r"^\\\\wsl(\$|\.localhost)\\",
)
DEFAULT_APPLY_TIMEOUT = 300.0
CONFIG_FILE_NAME = "stackpact.yaml"

_TRUTHY = {"1", "true", "yes", "on"}


def get_stackpact_home() -> Path:
    """
    Get the stackpact home directory.

    Returns:
        Path: Stackpact home directory
    """
    home = os.environ.get("STACKPACT_HOME", ".stackpact")
    return Path(home).resolve()


def env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUTHY


@dataclass(frozen=True)
class Settings:
    """Engine settings; immutable for the duration of a run."""
    home: Path
    arm_file: Path
    edge_ports: Tuple[int, ...] = DEFAULT_EDGE_PORTS
    ingress_role_label: str = "stackpact.role"
    ingress_role_value: str = "ingress"
    bridged_prefixes: Tuple[str, ...] = DEFAULT_BRIDGED_PREFIXES
    disabled_rules: Tuple[str, ...] = ()
    apply_timeout: float = DEFAULT_APPLY_TIMEOUT
    events_dir: Optional[Path] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def templates_root(self) -> Path:
        """Directory that HTTP requests may load templates from."""
        return self.home / "templates"

    @classmethod
    def from_env(cls, config_path: Optional[str] = None) -> "Settings":
        """
        Build settings from the process environment and the policy file.

        Args:
            config_path: Explicit policy file; falls back to STACKPACT_CONFIG,
                then ./stackpact.yaml when present

        Returns:
            Settings instance
        """
        home = get_stackpact_home()
        arm_file = os.environ.get("STACKPACT_ARM_FILE")
        settings = cls(
            home=home,
            arm_file=Path(arm_file).resolve() if arm_file else home / "ARMED",
        )

        timeout = os.environ.get("STACKPACT_APPLY_TIMEOUT")
        if timeout:
            try:
                settings = replace(settings, apply_timeout=float(timeout))
            except ValueError:
                raise ValueError(f"STACKPACT_APPLY_TIMEOUT must be a number, got {timeout!r}")

        events_dir = os.environ.get("STACKPACT_EVENTS_DIR")
        if events_dir:
            settings = replace(settings, events_dir=Path(events_dir).resolve())

        path = config_path or os.environ.get("STACKPACT_CONFIG")
        if path is None and Path(CONFIG_FILE_NAME).exists():
            path = CONFIG_FILE_NAME
        if path:
            settings = settings.overlay(load_config_file(Path(path)))
        return settings

    def overlay(self, data: Mapping[str, Any]) -> "Settings":
        """Return a copy with values from a parsed policy file applied."""
        changes: Dict[str, Any] = {}
        extra = dict(self.extra)

        for key, value in data.items():
            if key == "edge_ports":
                changes["edge_ports"] = tuple(int(p) for p in value)
            elif key == "bridged_prefixes":
                changes["bridged_prefixes"] = tuple(str(p) for p in value)
            elif key == "disabled_rules":
                changes["disabled_rules"] = tuple(str(r) for r in value)
            elif key == "apply_timeout":
                changes["apply_timeout"] = float(value)
            elif key in ("ingress_role_label", "ingress_role_value"):
                changes[key] = str(value)
            elif key == "arm_file":
                changes["arm_file"] = Path(value).resolve()
            elif key == "events_dir":
                changes["events_dir"] = Path(value).resolve()
            else:
                logger.debug(f"Unrecognised config key kept as extra: {key}")
                extra[key] = value

        changes["extra"] = extra
        return replace(self, **changes)


def load_config_file(path: Path) -> Dict[str, Any]:
    """
    Load a YAML policy file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the document is not a mapping
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a YAML mapping")

    logger.debug(f"Loaded config from {path}: {sorted(data)}")
    return data


def parse_assignments(pairs: List[str]) -> Dict[str, str]:
    """
    Parse operator-provided strings in format "KEY=VALUE".

    Args:
        pairs: List of "KEY=VALUE" strings

    Returns:
        Dictionary of parsed values

    Raises:
        ValueError: If an assignment is malformed
    """
    values = {}

    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Invalid assignment: {pair}. Expected 'KEY=VALUE'")

        key, value = pair.split("=", 1)
        if not key.strip():
            raise ValueError(f"Invalid assignment: {pair}. Key must not be empty")

        values[key.strip()] = value

    return values
