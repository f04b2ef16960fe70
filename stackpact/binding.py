from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple

from .identity import StackIdentity

logger = logging.getLogger(__name__)

SECRETISH = re.compile(r"(?i)(secret|token|password|passwd|apikey|api_key|private_key|credential)")
HEX_LONG = re.compile(r"\b[0-9a-f]{32,}\b", re.I)
SECRET_REF_SCHEMES = ("ssm:", "secretsmanager:", "vault:", "k8s-secret:", "gcp-sm:", "azure-kv:")
FILE_VALUE_PREFIXES = ("file:", "/run/secrets/")

SOURCE_INPUT = "input"
SOURCE_FILE = "file"
SOURCE_DERIVED = "derived"

REDACTED = "[REDACTED]"


def is_secret_key(key: str) -> bool:
    return bool(SECRETISH.search(key))


def is_secret_ref(value: str) -> bool:
    return value.startswith(SECRET_REF_SCHEMES)


def redact_value(key: str, value: str) -> str:
    if is_secret_ref(value):
        return value
    if is_secret_key(key) or HEX_LONG.search(value):
        return REDACTED
    return value


def redact_dict(d: Mapping[str, str]) -> Dict[str, str]:
    return {k: redact_value(k, v) for k, v in d.items()}


@dataclass(frozen=True)
class BindingEntry:
    key: str
    value: str
    source: str

    @property
    def secret(self) -> bool:
        return is_secret_key(self.key)

    @property
    def file_based(self) -> bool:
        """Whether the value arrives through a file-based injection mechanism."""
        return (
            self.source == SOURCE_FILE
            or self.key.upper().endswith("_FILE")
            or self.value.startswith(FILE_VALUE_PREFIXES)
        )

    @property
    def literal_secret(self) -> bool:
        return self.secret and not self.file_based and not is_secret_ref(self.value)


class Binding(Mapping):
    """Resolved variables for one deployment, partitioned into secret refs and plain values."""

    def __init__(self, identity: StackIdentity, entries: Mapping[str, BindingEntry]):
        self.identity = identity
        self._entries = MappingProxyType(dict(sorted(entries.items())))

    def __getitem__(self, key: str) -> str:
        return self._entries[key].value

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Binding(stack={self.identity.stack!r}, keys={list(self._entries)})"

    def entry(self, key: str) -> BindingEntry:
        return self._entries[key]

    def entries(self) -> Tuple[BindingEntry, ...]:
        return tuple(self._entries.values())

    @property
    def secret_refs(self) -> Dict[str, str]:
        return {e.key: e.value for e in self._entries.values() if e.secret}

    @property
    def plain_values(self) -> Dict[str, str]:
        return {e.key: e.value for e in self._entries.values() if not e.secret}

    def redacted(self) -> Dict[str, str]:
        return redact_dict(dict(self))


def build_binding(
    identity: StackIdentity,
    inputs: Mapping[str, str],
    file_inputs: Optional[Mapping[str, str]] = None,
) -> Binding:
    """
    Merge derived identity values, env-file values and operator inputs.

    Precedence, lowest first: env-file, operator inputs, derived values.
    Derived keys were already checked for conflicts by the resolver.
    """
    entries: Dict[str, BindingEntry] = {}

    for source, values in ((SOURCE_FILE, file_inputs or {}), (SOURCE_INPUT, inputs)):
        for k, v in values.items():
            if v is None:
                continue
            entries[k] = BindingEntry(key=k, value=str(v), source=source)

    for k, v in identity.as_values().items():
        entries[k] = BindingEntry(key=k, value=v, source=SOURCE_DERIVED)

    binding = Binding(identity, entries)
    logger.debug(f"Binding for {identity.stack}: {binding.redacted()}")
    return binding


def load_env_file(path: Path) -> Dict[str, str]:
    """
    Parse a KEY=VALUE env file.

    Blank lines and comments are skipped, an ``export`` prefix and surrounding
    quotes are removed.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: On a line without '='
    """
    values: Dict[str, str] = {}
    text = Path(path).read_text(encoding="utf-8")

    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()
        if "=" not in line:
            raise ValueError(f"{path}:{lineno}: expected KEY=VALUE")
        k, v = line.split("=", 1)
        k = k.strip()
        v = v.strip()
        if v[:1] in ("'", '"'):
            parts = shlex.split(v)
            v = parts[0] if parts else ""
        values[k] = v

    return values
