"""Main CLI entrypoint for stackpact."""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click

from ..adapters import TARGET_RUNTIMES, get_adapter, list_adapters
from ..binding import load_env_file, redact_value
from ..config import Settings, parse_assignments
from ..errors import StackpactError
from ..identity import DOMAIN_KEYS, Environment
from ..inventory import load_snapshot
from ..orchestrator import DeploymentRequest, Orchestrator, RunResult, RunState, prepare
from ..policy import Violation, default_registry
from ..smoke import app_url, run_smoke_check
from ..templates import load_templates

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BLOCKED = 2
EXIT_APPLY_ERROR = 3
EXIT_INTERNAL = 4

# Process-environment keys read as the lowest-precedence inputs
ENVIRON_KEYS = ("STACK",) + tuple(sorted(set(DOMAIN_KEYS.values())))


@click.group()
@click.option('--json', 'output_json', is_flag=True, help='Output machine-readable JSON')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='Policy config file (YAML)')
@click.pass_context
def main(ctx, output_json, verbose, config_path):
    """Stackpact - render, validate and gate multi-runtime deployments."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj['json'] = output_json
    ctx.obj['config_path'] = config_path


def _json_output(data: Dict[str, Any]) -> None:
    """Output data as JSON."""
    click.echo(json.dumps(data, indent=None))


def _settings() -> Settings:
    return Settings.from_env(click.get_current_context().obj.get('config_path'))


def stack_options(f):
    """Options shared by render, validate and deploy."""
    options = [
        click.option('--stack', help='Stack identity token (overrides STACK)'),
        click.option('--env', 'environment', type=click.Choice([e.value for e in Environment]), default='dev', show_default=True, help='Environment tier'),
        click.option('--templates', 'templates_dir', required=True, type=click.Path(exists=True, file_okay=False), help='Template directory'),
        click.option('--target', type=click.Choice(list_adapters()), default='compose', show_default=True, help='Target runtime'),
        click.option('--runtime', type=click.Choice(sorted(set(TARGET_RUNTIMES.values()))), help='Template runtime (defaults to the target\'s)'),
        click.option('--set', 'assignments', multiple=True, help='Input variable KEY=VALUE'),
        click.option('--env-file', type=click.Path(exists=True, dir_okay=False), help='KEY=VALUE file of inputs'),
        click.option('--project-name', help='Explicit project name (must contain the stack)'),
        click.option('--inventory', 'inventory_file', type=click.Path(exists=True, dir_okay=False), help='Runtime inventory snapshot (JSON/YAML)'),
        click.option('--live-inventory', is_flag=True, help='Query the target for live inventory'),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _collect_inputs(stack: Optional[str], assignments: List[str], file_inputs: Dict[str, str]) -> Dict[str, str]:
    # process environment sits below the env-file
    inputs = {k: os.environ[k] for k in ENVIRON_KEYS if os.environ.get(k) and k not in file_inputs}
    inputs.update(parse_assignments(list(assignments)))
    if stack:
        inputs["STACK"] = stack
    return inputs


def _build_adapter(target: str, settings: Settings, project_name: Optional[str]):
    if target == "compose":
        return get_adapter("compose", workdir=settings.home / "compose", project_name=project_name)
    if target == "serverless":
        return get_adapter("serverless", region=os.environ.get("AWS_REGION", "us-west-2"))
    return get_adapter(target)


def _build_request(settings: Settings, wants_apply: bool, apply_timeout: Optional[float], **opts) -> DeploymentRequest:
    runtime = opts["runtime"] or TARGET_RUNTIMES.get(opts["target"], "compose")
    file_inputs = load_env_file(Path(opts["env_file"])) if opts["env_file"] else {}
    return DeploymentRequest(
        inputs=_collect_inputs(opts["stack"], opts["assignments"], file_inputs),
        environment=opts["environment"],
        templates=tuple(load_templates(opts["templates_dir"], runtime)),
        adapter=_build_adapter(opts["target"], settings, opts["project_name"]),
        wants_apply=wants_apply,
        project_name=opts["project_name"],
        file_inputs=file_inputs,
        inventory=load_snapshot(opts["inventory_file"]) if opts["inventory_file"] else None,
        live_inventory=opts["live_inventory"],
        apply_timeout=apply_timeout,
    )


def exit_code_for(result: RunResult) -> int:
    """Map a terminal run state to the process exit code."""
    if result.state is RunState.DONE:
        return EXIT_OK
    if result.state is RunState.BLOCKED:
        return EXIT_BLOCKED
    if result.state is RunState.FAILED and result.error is not None and result.error.code.startswith("apply"):
        return EXIT_APPLY_ERROR
    if result.state is RunState.FAILED:
        return EXIT_FAILED
    return EXIT_INTERNAL


def _fail(message: str, code: int, error: Optional[StackpactError] = None) -> None:
    ctx = click.get_current_context()
    if ctx.obj.get('json', False):
        _json_output({'error': error.to_dict() if error else {'code': 'error', 'message': message}})
    else:
        click.echo(f"❌ {message}", err=True)
        if error is not None and error.hint:
            click.echo(f"   hint: {error.hint}", err=True)
    sys.exit(code)


def _print_violation(v: Violation) -> None:
    color = 'yellow' if v.advisory else 'red'
    tag = 'advisory' if v.advisory else 'violation'
    where = f" [{v.location}]" if v.location else ""
    click.echo(f"  {click.style(v.violation_class, fg=color)} ({tag}) {v.value}{where}: {v.reason}")


def _print_result_human(result: RunResult) -> None:
    identity = result.identity
    if identity is not None:
        click.echo(f"📦 Stack: {identity.stack} ({identity.environment.value}) → {identity.app_host}")
    for artifact in result.rendered:
        click.echo(f"  rendered {artifact.runtime}/{artifact.name} sha256:{artifact.digest[:12]}")

    if result.violations:
        click.echo("\n🔎 Policy:")
        for v in result.violations:
            _print_violation(v)

    state = result.state.value
    color = 'green' if result.state is RunState.DONE else ('yellow' if result.state is RunState.BLOCKED else 'red')
    click.echo(f"\nState: {click.style(state, fg=color)}")
    if result.error is not None:
        click.echo(f"{result.error}")
        if result.error.hint:
            click.echo(f"hint: {result.error.hint}")
    if result.apply_result is not None:
        click.echo(f"Applied via {result.apply_result.adapter} (changed={result.apply_result.changed})")


def _execute(settings: Settings, request: DeploymentRequest) -> RunResult:
    return Orchestrator(settings=settings).run(request)


@main.command()
@stack_options
@click.option('--out', 'out_dir', type=click.Path(file_okay=False), help='Write artifacts to this directory instead of stdout')
@click.pass_context
def render(ctx, out_dir, **opts):
    """Render artifacts for a stack."""
    try:
        settings = _settings()
        request = _build_request(settings, wants_apply=False, apply_timeout=None, **opts)
        identity, binding, rendered = prepare(request)
    except StackpactError as e:
        _fail(str(e), EXIT_FAILED, e)
    except (ValueError, FileNotFoundError) as e:
        _fail(str(e), EXIT_FAILED)
    except Exception as e:
        _fail(f"Internal error: {e}", EXIT_INTERNAL)

    if out_dir:
        out = Path(out_dir)
        out.mkdir(parents=True, exist_ok=True)
        for artifact in rendered:
            (out / artifact.name).write_text(artifact.text, encoding="utf-8")

    if ctx.obj.get('json'):
        _json_output({
            'stack': identity.stack,
            'app_host': identity.app_host,
            'binding': {k: redact_value(k, v) for k, v in binding.items()},
            'artifacts': [
                {'name': a.name, 'runtime': a.runtime, 'sha256': a.digest, 'text': None if out_dir else a.text}
                for a in rendered
            ],
        })
    elif out_dir:
        for artifact in rendered:
            click.echo(f"✅ {Path(out_dir) / artifact.name}")
    else:
        for artifact in rendered:
            click.echo(f"# --- {artifact.runtime}/{artifact.name}")
            click.echo(artifact.text.rstrip("\n"))
    sys.exit(EXIT_OK)


@main.command()
@stack_options
@click.pass_context
def validate(ctx, **opts):
    """Render and validate a stack without applying anything."""
    try:
        settings = _settings()
        request = _build_request(settings, wants_apply=False, apply_timeout=None, **opts)
        result = _execute(settings, request)
    except (ValueError, FileNotFoundError) as e:
        _fail(str(e), EXIT_FAILED)
    except Exception as e:
        _fail(f"Internal error: {e}", EXIT_INTERNAL)

    if ctx.obj.get('json'):
        _json_output(result.to_dict())
    else:
        _print_result_human(result)
        if result.state is RunState.DONE:
            click.echo("✅ Policy passed" if not result.violations else "✅ Policy passed with advisories")
    sys.exit(exit_code_for(result))


@main.command()
@stack_options
@click.option('--apply', 'wants_apply', is_flag=True, help='Apply the artifacts (otherwise stop after validation)')
@click.option('--timeout', 'apply_timeout', type=float, help='Apply timeout in seconds')
@click.option('--verify', is_flag=True, help='Smoke check https://<app host> after apply')
@click.option('--verify-path', default='/', show_default=True, help='Path for the smoke check')
@click.pass_context
def deploy(ctx, wants_apply, apply_timeout, verify, verify_path, **opts):
    """Render, validate, gate and (with --apply) apply a stack."""
    try:
        settings = _settings()
        request = _build_request(settings, wants_apply=wants_apply, apply_timeout=apply_timeout, **opts)
        result = _execute(settings, request)
    except (ValueError, FileNotFoundError) as e:
        _fail(str(e), EXIT_FAILED)
    except Exception as e:
        _fail(f"Internal error: {e}", EXIT_INTERNAL)

    smoke = None
    if verify and result.applied and result.identity is not None:
        smoke = run_smoke_check(app_url(result.identity.app_host), path=verify_path)

    if ctx.obj.get('json'):
        data = result.to_dict()
        if smoke is not None:
            data['smoke'] = smoke.to_dict()
        _json_output(data)
    else:
        _print_result_human(result)
        if result.state is RunState.DONE and not wants_apply:
            click.echo("ℹ️  Validation passed; re-run with --apply to deploy")
        if smoke is not None:
            click.echo(f"{'✅' if smoke.success else '❌'} {smoke.message}")
    sys.exit(exit_code_for(result))


@main.command()
@click.pass_context
def rules(ctx):
    """List the policy rules in effect."""
    registry = default_registry(_settings())
    described = [rule.describe() for rule in registry.rules()]
    if ctx.obj.get('json'):
        _json_output({'rules': described})
        return
    for rule in described:
        scope = " (inventory)" if rule['inventory'] else ""
        click.echo(f"{rule['name']:<20} {rule['class']:<22} {rule['description']}{scope}")


if __name__ == '__main__':
    main()
