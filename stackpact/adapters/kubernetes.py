"""
Kubernetes adapter built on ``kubectl apply``.
"""

import json
import logging
import subprocess
from typing import List, Optional, Sequence

from ..inventory import RuntimeInventorySnapshot, RuntimeResource, utc_now
from ..templates.model import RenderedArtifact
from .base import ApplyResult, RuntimeAdapter

logger = logging.getLogger(__name__)


class KubernetesAdapter(RuntimeAdapter):
    name = "kubernetes"
    runtime = "kubernetes"

    def __init__(self, context: Optional[str] = None, namespace: Optional[str] = None, kubectl: str = "kubectl"):
        self.context = context
        self.namespace = namespace
        self.kubectl = kubectl

    def _base(self) -> List[str]:
        cmd = [self.kubectl]
        if self.context:
            cmd.extend(["--context", self.context])
        if self.namespace:
            cmd.extend(["--namespace", self.namespace])
        return cmd

    def _run(self, cmd: List[str], stdin: Optional[str] = None) -> str:
        logger.info(f"Running: {' '.join(cmd)}")
        try:
            proc = subprocess.run(cmd, input=stdin, check=True, capture_output=True, text=True)
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"{' '.join(cmd[:3])} failed (exit {e.returncode}): {(e.stderr or e.stdout or '').strip()}")
        except FileNotFoundError:
            raise RuntimeError(f"{self.kubectl} executable not found")
        return proc.stdout or ""

    def apply(self, artifacts: Sequence[RenderedArtifact]) -> ApplyResult:
        selected = self.select(artifacts)
        outputs = []
        changed = False
        for artifact in selected:
            out = self._run(self._base() + ["apply", "-f", "-"], stdin=artifact.text)
            outputs.append(out.strip())
            # kubectl reports "unchanged" for every object it left alone
            lines = [line for line in out.splitlines() if line.strip()]
            if any(not line.rstrip().endswith("unchanged") for line in lines):
                changed = True

        return ApplyResult(
            adapter=self.name,
            changed=changed,
            applied=[a.name for a in selected],
            output="\n".join(outputs),
        )

    def inventory(self) -> Optional[RuntimeInventorySnapshot]:
        cmd = self._base() + ["get", "pods", "-o", "json"]
        if not self.namespace:
            cmd.append("--all-namespaces")
        data = json.loads(self._run(cmd) or "{}")

        resources = []
        for pod in data.get("items", []):
            meta = pod.get("metadata", {})
            containers = pod.get("spec", {}).get("containers", [])
            ports = {
                int(p["hostPort"])
                for c in containers
                for p in c.get("ports", []) or []
                if p.get("hostPort")
            }
            resources.append(RuntimeResource(
                name=meta.get("name", "?"),
                labels={str(k): str(v) for k, v in (meta.get("labels") or {}).items()},
                bound_ports=tuple(sorted(ports)),
                networks=(meta.get("namespace", "default"),),
                image=containers[0].get("image") if containers else None,
            ))
        return RuntimeInventorySnapshot(resources=tuple(resources), source="kubernetes", taken_at=utc_now())
