"""
Read-only snapshots of running resources.

Snapshots come from a runtime adapter (``docker ps``, ``kubectl get pods``)
or from a JSON/YAML file captured elsewhere.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

# "0.0.0.0:80->80/tcp", ":::443->443/tcp", "127.0.0.1:8080-8081->80-81/tcp"
PORT_BINDING = re.compile(r"(?:(?P<host>[\d.]+|\[?[0-9a-fA-F:]*\]?):)?(?P<start>\d+)(?:-(?P<end>\d+))?->")


@dataclass(frozen=True)
class RuntimeResource:
    """One running container or process."""
    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    bound_ports: Tuple[int, ...] = ()
    networks: Tuple[str, ...] = ()
    image: Optional[str] = None

    def role(self, label: str) -> Optional[str]:
        return self.labels.get(label)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "labels": dict(self.labels),
            "boundPorts": list(self.bound_ports),
            "networkAttachments": list(self.networks),
            "image": self.image,
        }


@dataclass(frozen=True)
class RuntimeInventorySnapshot:
    resources: Tuple[RuntimeResource, ...]
    source: str = "unknown"
    taken_at: str = ""

    def bound_to(self, ports: Iterable[int]) -> List[RuntimeResource]:
        wanted = set(ports)
        return [r for r in self.resources if wanted.intersection(r.bound_ports)]


def resource_from_dict(data: Mapping[str, Any]) -> RuntimeResource:
    """Build a resource from the wire shape {name, labels, boundPorts, networkAttachments}."""
    if not data.get("name"):
        raise ValueError(f"Inventory resource without a name: {dict(data)}")
    ports = data.get("boundPorts", data.get("bound_ports", [])) or []
    networks = data.get("networkAttachments", data.get("networks", [])) or []
    return RuntimeResource(
        name=str(data["name"]),
        labels={str(k): str(v) for k, v in (data.get("labels") or {}).items()},
        bound_ports=tuple(sorted({int(p) for p in ports})),
        networks=tuple(sorted(str(n) for n in networks)),
        image=data.get("image"),
    )


def snapshot_from_data(data: Any, source: str) -> RuntimeInventorySnapshot:
    items = data.get("resources", []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise ValueError(f"Inventory {source} must be a list of resources or {{resources: [...]}}")
    resources = tuple(resource_from_dict(item) for item in items)
    return RuntimeInventorySnapshot(resources=resources, source=source, taken_at=utc_now())


def load_snapshot(path: str | Path) -> RuntimeInventorySnapshot:
    """
    Load an inventory snapshot from a JSON or YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the document has the wrong shape
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Inventory file not found: {path}")

    text = path.read_text(encoding="utf-8")
    data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    snapshot = snapshot_from_data(data or [], source=f"file:{path}")
    logger.info(f"Loaded {len(snapshot.resources)} resource(s) from {path}")
    return snapshot


def parse_port_bindings(ports: str) -> Tuple[int, ...]:
    """Host ports published in a ``docker ps`` Ports column."""
    found = set()
    for m in PORT_BINDING.finditer(ports or ""):
        start = int(m.group("start"))
        end = int(m.group("end") or start)
        found.update(range(start, end + 1))
    return tuple(sorted(found))


def parse_labels(labels: str) -> Dict[str, str]:
    """``docker ps`` renders labels as "k1=v1,k2=v2"."""
    parsed: Dict[str, str] = {}
    last = None
    for item in (labels or "").split(","):
        if not item:
            continue
        if "=" not in item and last is not None:
            # a comma inside a label value, e.g. Host(`a`,`b`)
            parsed[last] += "," + item
            continue
        k, _, v = item.partition("=")
        last = k.strip()
        parsed[last] = v.strip()
    return parsed


def parse_docker_ps(lines: Iterable[str]) -> RuntimeInventorySnapshot:
    """Parse ``docker ps --format '{{json .}}'`` output, one JSON object per line."""
    resources = []
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            row = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed docker ps line: {line[:80]}")
            continue
        networks = [n for n in (row.get("Networks") or "").split(",") if n]
        resources.append(RuntimeResource(
            name=row.get("Names", row.get("ID", "?")),
            labels=parse_labels(row.get("Labels", "")),
            bound_ports=parse_port_bindings(row.get("Ports", "")),
            networks=tuple(sorted(networks)),
            image=row.get("Image"),
        ))
    return RuntimeInventorySnapshot(resources=tuple(resources), source="docker", taken_at=utc_now())


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()
