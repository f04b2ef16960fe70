"""
Tests for template loading and rendering.
"""

import pytest

from stackpact.errors import MalformedTemplate, UnresolvedPlaceholder
from stackpact.templates import ArtifactTemplate, load_templates, placeholders, render, render_all


def tpl(text, name="docker-compose.yaml", runtime="compose"):
    return ArtifactTemplate(name=name, runtime=runtime, text=text)


class TestRender:
    """Test placeholder substitution."""

    def test_render_compose(self, compose_template, dev_binding):
        artifact = render(compose_template, dev_binding)
        assert "${" not in artifact.text
        assert "name: acctdemo\n" in artifact.text
        assert "Host(`acctdemo.localhost`)" in artifact.text
        assert artifact.documents[0]["services"]["web"]["image"] == "ghcr.io/acme/web:1.4.2"

    def test_idempotent(self, compose_template, dev_binding):
        first = render(compose_template, dev_binding)
        second = render(compose_template, dev_binding)
        assert first.text == second.text
        assert first.digest == second.digest

    def test_escaped_dollar(self):
        artifact = render(tpl("cmd: echo $${HOME} ${A}\n"), {"A": "x"})
        assert artifact.text == "cmd: echo ${HOME} x\n"

    def test_bare_dollar_kept(self):
        artifact = render(tpl("price: $5 ${A}\n"), {"A": "x"})
        assert artifact.text == "price: $5 x\n"

    def test_bound_value_with_dollars_untouched(self):
        artifact = render(tpl("pw: '${PW}'\n"), {"PW": "a$$b"})
        assert artifact.text == "pw: 'a$$b'\n"

    def test_nested_expansion(self):
        binding = {"PUBLIC_HOST": "${APP_HOST}", "APP_HOST": "acctdemo.localhost"}
        artifact = render(tpl("host: ${PUBLIC_HOST}\n"), binding)
        assert artifact.text == "host: acctdemo.localhost\n"

    def test_value_with_placeholder_text_verbatim(self):
        binding = {"URL": "https://${HOST}/api", "HOST": "acctdemo.localhost"}
        artifact = render(tpl("url: ${URL}\n"), binding)
        assert artifact.text == "url: https://${HOST}/api\n"

    def test_value_with_open_brace_verbatim(self):
        artifact = render(tpl("pw: '${DB_PASSWORD}'\n"), {"DB_PASSWORD": "pa${ss"})
        assert artifact.text == "pw: 'pa${ss'\n"

    def test_value_dollars_independent_of_braces(self):
        artifact = render(tpl("pw: '${PW}'\n"), {"PW": "a$$b${c"})
        assert artifact.text == "pw: 'a$$b${c'\n"

    def test_placeholders(self, compose_template):
        assert placeholders(compose_template) == ["APP_HOST", "COMPOSE_PROJECT_NAME", "STACK", "WEB_IMAGE"]


class TestRenderErrors:
    """Test unresolved and malformed templates."""

    def test_unresolved_placeholder(self):
        with pytest.raises(UnresolvedPlaceholder) as exc:
            render(tpl("a: ${A}\nb: ${MISSING}\n"), {"A": "1"})
        assert exc.value.name == "MISSING"
        assert exc.value.template == "docker-compose.yaml"

    def test_unterminated(self):
        with pytest.raises(MalformedTemplate):
            render(tpl("a: ${A\n"), {"A": "1"})

    def test_invalid_name(self):
        with pytest.raises(MalformedTemplate):
            render(tpl("a: ${1A}\n"), {"1A": "1"})

    def test_cycle(self):
        with pytest.raises(MalformedTemplate, match="cycle"):
            render(tpl("a: ${A}\n"), {"A": "${B}", "B": "${A}"})

    def test_invalid_yaml_output(self):
        with pytest.raises(MalformedTemplate, match="not valid YAML"):
            render(tpl("a: ${A}\n"), {"A": "[unclosed"})

    def test_non_yaml_not_parsed(self):
        artifact = render(tpl("a: ${A}\n", name="Caddyfile"), {"A": "[unclosed"})
        assert artifact.documents == []


class TestRenderAll:
    """Test rendering a template set."""

    def test_sorted_and_complete(self):
        templates = [tpl("b: ${A}\n", name="b.yaml"), tpl("a: ${A}\n", name="a.yaml")]
        rendered = render_all(templates, {"A": "1"})
        assert [a.name for a in rendered] == ["a.yaml", "b.yaml"]

    def test_missing_names_aggregated(self):
        templates = [tpl("b: ${X}\n", name="b.yaml"), tpl("a: ${Y}\n", name="a.yaml")]
        with pytest.raises(UnresolvedPlaceholder) as exc:
            render_all(templates, {})
        assert sorted(exc.value.names) == ["X", "Y"]

    def test_duplicate_names(self):
        with pytest.raises(MalformedTemplate, match="duplicate"):
            render_all([tpl("a: 1\n"), tpl("a: 2\n")], {})


class TestLoadTemplates:
    """Test loading templates from disk."""

    def test_runtime_subdirectory(self, templates_dir):
        templates = load_templates(templates_dir, "compose")
        assert [t.name for t in templates] == ["docker-compose.yaml"]
        assert templates[0].runtime == "compose"

    def test_flat_directory(self, templates_dir):
        templates = load_templates(templates_dir / "compose", "compose")
        assert len(templates) == 1

    def test_unknown_runtime(self, templates_dir):
        with pytest.raises(ValueError):
            load_templates(templates_dir, "nomad")

    def test_empty_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_templates(tmp_path, "compose")
