"""
Artifact templates and the placeholder renderer.
"""

from .model import ArtifactTemplate, RenderedArtifact, RUNTIMES
from .render import render, render_all, placeholders
from .loader import load_templates

__all__ = [
    "ArtifactTemplate",
    "RenderedArtifact",
    "RUNTIMES",
    "render",
    "render_all",
    "placeholders",
    "load_templates",
]
