"""
Docker Compose adapter.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from ..inventory import RuntimeInventorySnapshot, parse_docker_ps
from ..templates.model import RenderedArtifact
from .base import ApplyResult, RuntimeAdapter

logger = logging.getLogger(__name__)


class ComposeAdapter(RuntimeAdapter):
    """Writes compose artifacts to a work dir and converges them with ``docker compose up``."""

    name = "compose"
    runtime = "compose"

    def __init__(self, workdir: str | Path, project_name: Optional[str] = None, docker: str = "docker"):
        self.workdir = Path(workdir)
        self.project_name = project_name
        self.docker = docker

    def _project(self, artifacts: Sequence[RenderedArtifact]) -> str:
        for artifact in artifacts:
            for doc in artifact.documents:
                if isinstance(doc, dict) and doc.get("name"):
                    return str(doc["name"])
        if self.project_name:
            return self.project_name
        raise RuntimeError("Compose project name unknown: set top-level 'name' in the compose template")

    def _write(self, project_dir: Path, artifact: RenderedArtifact) -> bool:
        path = project_dir / artifact.name
        if path.exists() and path.read_text(encoding="utf-8") == artifact.text:
            return False
        path.write_text(artifact.text, encoding="utf-8")
        return True

    def apply(self, artifacts: Sequence[RenderedArtifact]) -> ApplyResult:
        selected = self.select(artifacts)
        if not selected:
            return ApplyResult(adapter=self.name, changed=False, output="no compose artifacts")

        project = self._project(selected)
        project_dir = self.workdir / project
        project_dir.mkdir(parents=True, exist_ok=True)

        changed = [a.name for a in selected if self._write(project_dir, a)]

        cmd: List[str] = [self.docker, "compose", "-p", project]
        for artifact in selected:
            cmd.extend(["-f", str(project_dir / artifact.name)])
        cmd.extend(["up", "-d", "--remove-orphans"])

        logger.info(f"Running: {' '.join(cmd)}")
        try:
            proc = subprocess.run(cmd, check=True, capture_output=True, text=True, cwd=project_dir)
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"docker compose up failed (exit {e.returncode}): {(e.stderr or e.stdout or '').strip()}")
        except FileNotFoundError:
            raise RuntimeError(f"{self.docker} executable not found")

        return ApplyResult(
            adapter=self.name,
            changed=bool(changed),
            applied=[a.name for a in selected],
            output=(proc.stdout or "") + (proc.stderr or ""),
            details={"project": project, "workdir": str(project_dir), "rewritten": changed},
        )

    def inventory(self) -> Optional[RuntimeInventorySnapshot]:
        cmd = [self.docker, "ps", "--format", "{{json .}}"]
        try:
            proc = subprocess.run(cmd, check=True, capture_output=True, text=True)
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"docker ps failed (exit {e.returncode}): {(e.stderr or '').strip()}")
        except FileNotFoundError:
            raise RuntimeError(f"{self.docker} executable not found")
        return parse_docker_ps(proc.stdout.splitlines())
