#!/usr/bin/env python3
"""
evidence-engine command line interface.

Operator commands for inspecting and maintaining an evidence tree: storage
statistics, retention cleanup, manifest verification, collection summaries
and archive extraction.

Usage:
    evidence-engine --help
    evidence-engine [--config settings.yaml] [--evidence-path DIR] COMMAND

Examples:
    evidence-engine stats
    evidence-engine verify run-42
    evidence-engine extract evidence/archives/run-42/run-42_1700000000000.json.gz restored/

Environment Variables:
    EVIDENCE_PATH: Root of the evidence tree (default ./evidence)
    EVIDENCE_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
"""

from __future__ import annotations

import dataclasses
import json
import logging
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
import yaml
from rich.console import Console

from evidence_engine import __version__
from evidence_engine.config.settings import EvidenceSettings
from evidence_engine.core.exceptions import ConfigurationError
from evidence_engine.core.utils.logging import configure_cli_logging

from .commands import evidence

console = Console()
logger = logging.getLogger(__name__)


def load_config_file(config_path: str) -> dict[str, Any]:
    """Read a YAML or JSON settings file.

    Raises:
        ConfigurationError: if the file is missing, unsupported or malformed.
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as handle:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(handle)
            elif path.suffix.lower() == ".json":
                data = json.load(handle)
            else:
                raise ConfigurationError(f"Unsupported configuration format: {path.suffix}")
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Failed to parse configuration file: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration file must contain a mapping at the top level")
    logger.debug("Loaded configuration from %s", config_path)
    return data


def build_settings(config_path: Optional[str] = None, evidence_path: Optional[str] = None) -> EvidenceSettings:
    """Settings from the config file when given, otherwise from the environment."""
    settings = EvidenceSettings.from_mapping(load_config_file(config_path)) if config_path else EvidenceSettings.from_env()
    if evidence_path:
        settings = dataclasses.replace(settings, evidence_path=Path(evidence_path))
    return settings


app = typer.Typer(
    name="evidence-engine",
    help="Inspect and maintain test execution evidence",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"evidence-engine {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose output.")] = False,
    config_path: Annotated[Optional[str], typer.Option("--config", "-c", help="Path to a YAML or JSON settings file.")] = None,
    evidence_path: Annotated[Optional[str], typer.Option("--evidence-path", "-p", help="Root of the evidence tree.")] = None,
    version: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show the version and exit."),
    ] = False,
) -> None:
    """evidence-engine CLI."""
    configure_cli_logging(verbose)
    try:
        ctx.obj = build_settings(config_path, evidence_path)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        raise typer.Exit(code=1) from exc


app.command("stats")(evidence.stats)
app.command("cleanup")(evidence.cleanup)
app.command("verify")(evidence.verify)
app.command("summary")(evidence.summary)
app.command("extract")(evidence.extract)


if __name__ == "__main__":
    app()
