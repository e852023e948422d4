"""
Command-line interface for livecomp.
Inspect compiled artifacts, print the browser runtime, or serve an app.
"""
# typer relies on function calls used as default values
# pyright: reportCallInDefaultInitializer=false

from __future__ import annotations

import importlib
import importlib.util
import json
import logging
import os
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax

from livecomp.app import LiveApp
from livecomp.env import ENV_LIVECOMP_APP_DIR, env
from livecomp.errors import LiveComponentError
from livecomp.runtime_js import runtime_js

cli = typer.Typer(
	name="livecomp",
	help="livecomp - server-rendered templates with live client updates",
	no_args_is_help=True,
)


@cli.callback()
def configure(
	verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
	logging.basicConfig(
		level=logging.DEBUG if verbose else logging.INFO,
		format="%(message)s",
		handlers=[RichHandler(show_path=False)],
	)


def load_app(target: str) -> LiveApp:
	"""Load ``path/to/app.py[:var]`` or ``module.path:var`` (default var ``app``)."""
	location, _, app_var = target.partition(":")
	app_var = app_var or "app"
	path = Path(location)
	if path.suffix == ".py" or path.exists():
		if not path.is_file():
			raise RuntimeError(f"App file not found: {path}")
		path = path.resolve()
		sys.path.insert(0, str(path.parent))
		spec = importlib.util.spec_from_file_location(path.stem, path)
		if spec is None or spec.loader is None:
			raise RuntimeError(f"Unable to load module from {path}")
		module = importlib.util.module_from_spec(spec)
		sys.modules[path.stem] = module
		spec.loader.exec_module(module)
		module_name = path.stem
		env_dir = path.parent
	else:
		module = importlib.import_module(location)
		module_name = location
		module_file = getattr(module, "__file__", None)
		env_dir = Path(module_file).parent if module_file else None

	if not hasattr(module, app_var):
		raise RuntimeError(f"App variable '{app_var}' not found in {module_name}")
	app = getattr(module, app_var)
	if not isinstance(app, LiveApp):
		raise RuntimeError(f"'{app_var}' in {module_name} is not a livecomp.LiveApp instance")
	if env_dir is not None and env.app_dir is None:
		os.environ[ENV_LIVECOMP_APP_DIR] = str(env_dir)
	return app


def _load_or_exit(target: str, console: Console) -> LiveApp:
	try:
		return load_app(target)
	except (RuntimeError, ImportError) as exc:
		console.log(f"❌ {exc}")
		raise typer.Exit(1) from exc


@cli.command("inspect")
def inspect_component(
	app_target: str = typer.Argument(..., help="App target: 'path/to/app.py[:var]' or 'module.path:var'"),
	component_id: str = typer.Argument(..., help="Component id to compile"),
	as_json: bool = typer.Option(False, "--json", help="Print only the artifact as JSON"),
):
	"""Compile one component and show its expression records and render function."""
	console = Console()
	app = _load_or_exit(app_target, console)
	if component_id not in app.registry:
		console.log(f"❌ Unknown component '{component_id}'")
		raise typer.Exit(1)
	try:
		artifact = app.compiler.compile(component_id)
	except LiveComponentError as exc:
		console.log(f"❌ {exc}")
		raise typer.Exit(1) from exc

	payload = json.dumps(artifact.to_dict(), indent=2)
	if as_json:
		typer.echo(payload)
		return
	console.rule(f"[bold]{component_id}[/bold] data")
	console.print(Syntax(payload, "json"))
	console.rule("render function")
	console.print(Syntax(f"function (data) {{\n{artifact.render_fn_body}\n}}", "javascript"))


@cli.command("components")
def list_components(
	app_target: str = typer.Argument(..., help="App target: 'path/to/app.py[:var]' or 'module.path:var'"),
):
	"""List registered components."""
	console = Console()
	app = _load_or_exit(app_target, console)
	for component_id in app.registry.ids():
		component_cls = app.registry[component_id]
		flags = []
		if component_cls.is_live():
			flags.append(f"live/{component_cls.update_strategy}")
		if component_cls.__actions__:
			flags.append("actions: " + ", ".join(sorted(component_cls.__actions__)))
		typer.echo(f"{component_id}\t{component_cls.__qualname__}\t{'; '.join(flags)}")


@cli.command("runtime-js")
def print_runtime(
	output: Path | None = typer.Option(None, "--output", "-o", help="Write to a file"),
	api_prefix: str | None = typer.Option(None, "--api-prefix"),
	debug: bool = typer.Option(False, "--debug", help="Log runtime activity to the console"),
):
	"""Print the browser runtime script."""
	script = runtime_js(api_prefix=api_prefix, debug=debug)
	if output is None:
		typer.echo(script)
		return
	output.write_text(script)
	Console().log(f"✅ Wrote runtime to {output}")


@cli.command("run")
def run(
	app_target: str = typer.Argument(..., help="App target: 'path/to/app.py[:var]' or 'module.path:var'"),
	address: str = typer.Option("127.0.0.1", "--bind-address", help="Host uvicorn binds to"),
	port: int = typer.Option(8000, "--bind-port", help="Port uvicorn binds to"),
):
	"""Serve the app with uvicorn."""
	console = Console()
	console.log(f"📁 Loading app from: {app_target}")
	app = _load_or_exit(app_target, console)
	console.log(f"📋 Found {len(app.registry.ids())} components")
	app.run(host=address, port=port)


def main():
	cli()


if __name__ == "__main__":
	main()
