"""
Placeholder renderer.

Supports ``${NAME}`` references and ``$$`` as an escaped ``$``. A bound value
that is exactly one ``${OTHER}`` reference is expanded against the same
binding; any other value is inserted verbatim. Nothing else is evaluated:
no defaults, no expressions.
"""

import logging
import re
from typing import Iterator, List, Mapping, Sequence, Set, Tuple

import yaml

from ..errors import MalformedTemplate, UnresolvedPlaceholder
from .model import ArtifactTemplate, RenderedArtifact

logger = logging.getLogger(__name__)

NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
ALIAS = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")
MAX_DEPTH = 8


def _scan(text: str) -> Iterator[Tuple[str, str]]:
    """Yield ("text", chunk) and ("ref", name) tokens."""
    i = 0
    start = 0
    n = len(text)
    while i < n:
        if text[i] != "$" or i + 1 >= n:
            i += 1
            continue
        nxt = text[i + 1]
        if nxt == "$":
            yield "text", text[start:i] + "$"
            i += 2
            start = i
        elif nxt == "{":
            end = text.find("}", i + 2)
            if end == -1:
                raise MalformedTemplate(f"unterminated placeholder at offset {i}")
            name = text[i + 2:end]
            if not NAME.match(name):
                raise MalformedTemplate(f"invalid placeholder {text[i:end + 1]!r}")
            if start < i:
                yield "text", text[start:i]
            yield "ref", name
            i = end + 1
            start = i
        else:
            i += 1
    if start < n:
        yield "text", text[start:]


def placeholders(template: ArtifactTemplate) -> List[str]:
    """Names referenced by a template, sorted."""
    try:
        return sorted({value for kind, value in _scan(template.text) if kind == "ref"})
    except MalformedTemplate as e:
        raise MalformedTemplate(e.reason, template.name) from None


def _expand(text: str, binding: Mapping[str, str], chain: Tuple[str, ...], missing: List[str]) -> str:
    if len(chain) > MAX_DEPTH:
        raise MalformedTemplate(f"placeholder nesting deeper than {MAX_DEPTH}: {' -> '.join(chain)}")

    out = []
    for kind, value in _scan(text):
        if kind == "text":
            out.append(value)
            continue
        if value in chain:
            raise MalformedTemplate(f"placeholder cycle: {' -> '.join(chain + (value,))}")
        if value not in binding:
            if value not in missing:
                missing.append(value)
            continue
        bound = str(binding[value])
        if ALIAS.match(bound):
            bound = _expand(bound, binding, chain + (value,), missing)
        out.append(bound)
    return "".join(out)


def render(template: ArtifactTemplate, binding: Mapping[str, str]) -> RenderedArtifact:
    """
    Substitute every placeholder of a template.

    Args:
        template: Template to render
        binding: Resolved variables

    Returns:
        RenderedArtifact with zero unresolved placeholders

    Raises:
        UnresolvedPlaceholder: A referenced name has no binding
        MalformedTemplate: Bad placeholder syntax, a cycle, or output that is not valid YAML
    """
    missing: List[str] = []
    try:
        text = _expand(template.text, binding, (), missing)
    except MalformedTemplate as e:
        raise MalformedTemplate(e.reason, template.name) from None

    if missing:
        raise UnresolvedPlaceholder(missing, template.name)

    if template.structured:
        try:
            list(yaml.safe_load_all(text))
        except yaml.YAMLError as e:
            raise MalformedTemplate(f"rendered output is not valid YAML: {e}", template.name) from None

    artifact = RenderedArtifact(name=template.name, runtime=template.runtime, text=text)
    logger.debug(f"Rendered {template.runtime}/{template.name} sha256={artifact.digest[:12]}")
    return artifact


def render_all(templates: Sequence[ArtifactTemplate], binding: Mapping[str, str]) -> List[RenderedArtifact]:
    """
    Render a template set in a stable order.

    Every template is attempted; missing names across the set are reported
    together in one UnresolvedPlaceholder.
    """
    seen: Set[Tuple[str, str]] = set()
    ordered = sorted(templates, key=lambda t: (t.runtime, t.name))
    for t in ordered:
        key = (t.runtime, t.name)
        if key in seen:
            raise MalformedTemplate("duplicate template name", t.name)
        seen.add(key)

    rendered: List[RenderedArtifact] = []
    missing: List[str] = []
    for t in ordered:
        try:
            rendered.append(render(t, binding))
        except UnresolvedPlaceholder as e:
            for name in e.names:
                if name not in missing:
                    missing.append(name)

    if missing:
        raise UnresolvedPlaceholder(missing)
    return rendered
