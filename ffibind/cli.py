#!/usr/bin/env python3

"""Command line entry point."""

import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.markup import escape

from ffibind.config import CONFIG_FILE_NAME, BindgenConfig
from ffibind.console import Console, setup_logging
from ffibind.diagnostics import ParseError, Target
from ffibind.pipeline import BindgenResult, discover_sources, generate

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_PARSE_FAILURE = 2
EXIT_IO_FAILURE = 3


def load_config(config_path: Path | None, source: Path) -> BindgenConfig:
    try:
        if config_path is not None:
            return BindgenConfig.load_from_file(config_path)
        start = source if source.is_dir() else source.parent
        return BindgenConfig.find_project_config(start) or BindgenConfig()
    except (ValidationError, ValueError, OSError) as e:
        raise click.ClickException(f"invalid configuration: {e}") from e


def run(
    source: Path,
    config_path: Path | None,
    output_dir: Path | None,
    targets: tuple[str, ...],
    lib_name: str | None,
    as_json: bool,
) -> int:
    config = load_config(config_path, source)
    if targets:
        config.targets = [Target(t) for t in targets]
    if lib_name:
        config.lib_name = lib_name

    console = Console()
    try:
        result = generate(discover_sources(source), config, output_dir)
    except ParseError as e:
        diagnostic = e.to_diagnostic()
        if as_json:
            console.diagnostics_json([diagnostic])
        else:
            console.print(f"[red]{escape(str(diagnostic))}[/red]")
        return EXIT_PARSE_FAILURE

    report(console, result, as_json)
    if result.io_failed:
        return EXIT_IO_FAILURE
    return EXIT_OK if result.success else EXIT_ERRORS


def report(console: Console, result: BindgenResult, as_json: bool) -> None:
    diagnostics = result.diagnostics.items
    if as_json:
        console.diagnostics_json(diagnostics)
        return
    console.diagnostics_table(diagnostics)
    for target, output in result.outputs.items():
        if output.written:
            for path in output.written:
                console.print(f"[green]wrote[/green] {escape(str(path))}")
        elif not output.succeeded:
            console.print(f"[red]{target.value}: no output, see errors above[/red]")
    console.print(f"{len(result.order)} declarations, {len(diagnostics)} diagnostics")


source_argument = click.argument("source", type=click.Path(exists=True, path_type=Path))
config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help=f"Configuration file (default: nearest {CONFIG_FILE_NAME})",
)
target_option = click.option(
    "--target",
    "targets",
    multiple=True,
    type=click.Choice([t.value for t in Target]),
    help="Restrict generation to these targets",
)
lib_name_option = click.option("--lib-name", help="Library name used for the header and loadLibrary")
json_option = click.option("--json", "as_json", is_flag=True, help="Print diagnostics as JSON")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """Generate C headers and Java/JNI bindings from Rust FFI declarations."""
    setup_logging(verbose)


@cli.command(name="generate")
@source_argument
@config_option
@click.option(
    "--out",
    "output_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("bindings"),
    show_default=True,
    help="Output directory",
)
@target_option
@lib_name_option
@json_option
def generate_command(source, config_path, output_dir, targets, lib_name, as_json):
    """Generate bindings for SOURCE (a crate directory or a .rs file)."""
    sys.exit(run(source, config_path, output_dir, targets, lib_name, as_json))


@cli.command()
@source_argument
@config_option
@target_option
@lib_name_option
@json_option
def check(source, config_path, targets, lib_name, as_json):
    """Report diagnostics for SOURCE without writing any files."""
    sys.exit(run(source, config_path, None, targets, lib_name, as_json))


@cli.command()
@click.argument("directory", type=click.Path(file_okay=False, path_type=Path), default=Path("."))
@click.option("--lib-name", default="backend", show_default=True)
@click.option("--package", default="com.example.ffi", show_default=True, help="Java package")
def init(directory: Path, lib_name: str, package: str):
    """Write a default configuration file."""
    config = BindgenConfig(lib_name=lib_name)
    config.java.package = package
    directory.mkdir(parents=True, exist_ok=True)
    config_path = directory / CONFIG_FILE_NAME
    if config_path.exists():
        raise click.ClickException(f"{config_path} already exists")
    config.save_to_file(config_path)
    click.echo(f"Configuration saved to: {config_path}")


if __name__ == "__main__":
    cli()
