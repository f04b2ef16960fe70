from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from .model import ArtifactTemplate, RUNTIMES

logger = logging.getLogger(__name__)

TEMPLATE_GLOBS = ("*.yaml", "*.yml", "*.json")


def load_templates(directory: str | Path, runtime: str) -> List[ArtifactTemplate]:
    """
    Load every template for a runtime.

    Looks in ``<directory>/<runtime>/`` first and falls back to ``<directory>``
    itself, so a single-runtime template folder can be passed directly.

    Raises:
        ValueError: Unknown runtime
        FileNotFoundError: No template directory or no templates in it
    """
    if runtime not in RUNTIMES:
        raise ValueError(f"Unknown runtime {runtime!r}. Expected one of: {', '.join(RUNTIMES)}")

    root = Path(directory)
    folder = root / runtime if (root / runtime).is_dir() else root
    if not folder.is_dir():
        raise FileNotFoundError(f"Template directory not found: {folder}")

    paths = sorted({p for pattern in TEMPLATE_GLOBS for p in folder.glob(pattern) if p.is_file()})
    if not paths:
        raise FileNotFoundError(f"No templates found in {folder}")

    templates = [
        ArtifactTemplate(name=p.name, runtime=runtime, text=p.read_text(encoding="utf-8"), path=str(p))
        for p in paths
    ]
    logger.info(f"Loaded {len(templates)} {runtime} template(s) from {folder}")
    return templates
