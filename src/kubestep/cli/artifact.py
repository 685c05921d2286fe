"""kubestep CLI - Artifact retrieval and configuration display."""

import json
import os
from pathlib import Path

import click

from kubestep.artifacts import get_artifact_store
from kubestep.errors import ArtifactNotFound

from .provision import _load_config


@click.command("artifact")
@click.argument("name")
@click.option("--output", "-o", type=click.Path(dir_okay=False),
              help="Write the artifact to this file instead of stdout")
def artifact(name, output):
    """Print or save an artifact (e.g. join-command, kubeconfig)."""
    config = _load_config()
    store = get_artifact_store(config)
    try:
        data = store.get(name)
    except ArtifactNotFound as e:
        available = ", ".join(store.names()) or "none"
        raise click.ClickException(f"{e}. Available artifacts: {available}") from e

    if output:
        path = Path(output)
        path.write_bytes(data)
        source = store.path_for(name)
        if source is not None:
            # Keep the kubeconfig private and the join script executable
            os.chmod(path, source.stat().st_mode & 0o777)
        click.echo(f"Wrote {name} to {path}")
    else:
        click.echo(data, nl=False)


@click.command("config")
@click.option("--format", "output_format", type=click.Choice(["table", "json"]),
              default="table", help="Output format")
def show_config(output_format):
    """Show the effective configuration."""
    config = _load_config()
    values = config.model_dump(mode="json")
    if output_format == "json":
        click.echo(json.dumps(values, indent=2))
        return
    width = max(len(key) for key in values)
    for key, value in values.items():
        click.echo(f"{key:{width}}  {value if value is not None else '-'}")
