"""Taskbridge CLI entrypoint."""

import asyncio
import json
import sys
from pathlib import Path

import click
import yaml

from .config.loader import ConfigError, create_default_config, load_config
from .config.models import TaskbridgeConfig
from .gaps.detector import MissingTaskError, detect_gaps
from .graph.cycles import build_adjacency, find_cycle_path, has_cycle
from .insertion.plan import PrioritizedPlan, integrate_into_plan
from .insertion.transaction import TaskInsertionError, insert_bridging_tasks
from .store.embedding import HashingEmbeddingProvider
from .store.memory import InMemorySimilarityIndex
from .store.persistence import GraphSnapshotError, load_graph, save_graph
from .utils.logging import setup_logging

CONTEXT_SETTINGS = {
    "help_option_names": ["-h", "--help"],
}


def _load_config_or_exit(ctx: click.Context) -> TaskbridgeConfig:
    config_path: Path = ctx.obj["config_path"]
    verbose: bool = ctx.obj["verbose"]

    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"✗ Configuration error: {e}", err=True)
        sys.exit(1)

    # Reconfigure logging with file output
    setup_logging(
        level="DEBUG" if verbose else config.logging.level,
        log_dir=config.logging.log_dir,
        rotation_mb=config.logging.rotation_mb,
        retention_days=config.logging.retention_days,
        use_colors=verbose,
        console=verbose,
    )
    return config


def _read_structured_file(path: Path):
    """Read a YAML or JSON document (JSON is valid YAML)."""
    with open(path, "r") as f:
        return yaml.safe_load(f)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "--config",
    "-c",
    default=".taskbridge/config.yml",
    help="Path to configuration file",
    type=click.Path(exists=False, path_type=Path),
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.pass_context
def cli(ctx: click.Context, config: Path, verbose: bool) -> None:
    """Taskbridge - task dependency graph integrity and gap bridging."""
    log_level = "DEBUG" if verbose else "WARNING"
    setup_logging(level=log_level)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite existing configuration",
)
@click.pass_context
def init(ctx: click.Context, force: bool) -> None:
    """Initialize Taskbridge configuration."""
    config_path: Path = ctx.obj["config_path"]

    if config_path.exists() and not force:
        click.echo(f"Configuration already exists: {config_path}")
        click.echo("Use --force to overwrite")
        sys.exit(1)

    try:
        create_default_config(config_path)
    except OSError as e:
        click.echo(f"✗ Failed to create configuration: {e}", err=True)
        sys.exit(1)

    click.echo(f"✓ Created configuration: {config_path}")
    click.echo("\nNext steps:")
    click.echo(f"  1. Review and customize {config_path}")
    click.echo("  2. Run: taskbridge detect <task-id> <task-id> ...")
    click.echo("  3. Run: taskbridge accept <batch.yml>")


@cli.command()
@click.argument("task_ids", nargs=-1, required=True)
@click.pass_context
def detect(ctx: click.Context, task_ids: tuple[str, ...]) -> None:
    """Detect gaps between consecutive TASK_IDS (plan order)."""
    config = _load_config_or_exit(ctx)

    try:
        store = load_graph(config.store.graph_path, config.store.recovery_page_size)
        result = asyncio.run(detect_gaps(store, list(task_ids), config.gaps))
    except GraphSnapshotError as e:
        click.echo(f"✗ Graph error: {e}", err=True)
        sys.exit(1)
    except MissingTaskError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)
    except ValueError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    click.echo(json.dumps(result.model_dump(mode="json"), indent=2))


@cli.command()
@click.argument("batch_file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--plan",
    "plan_file",
    type=click.Path(exists=True, path_type=Path),
    help="Prioritized plan file to update with the accepted tasks",
)
@click.pass_context
def accept(ctx: click.Context, batch_file: Path, plan_file: Path | None) -> None:
    """Insert the accepted bridging tasks listed in BATCH_FILE."""
    config = _load_config_or_exit(ctx)

    try:
        batch = _read_structured_file(batch_file)
    except yaml.YAMLError as e:
        click.echo(f"✗ Invalid batch file {batch_file}: {e}", err=True)
        sys.exit(1)
    if isinstance(batch, dict):
        batch = batch.get("tasks", [])
    if not isinstance(batch, list):
        click.echo(f"✗ Batch file must contain a list of tasks: {batch_file}", err=True)
        sys.exit(1)

    try:
        store = load_graph(config.store.graph_path, config.store.recovery_page_size)
    except GraphSnapshotError as e:
        click.echo(f"✗ Graph error: {e}", err=True)
        sys.exit(1)

    try:
        result = asyncio.run(
            insert_bridging_tasks(
                store,
                InMemorySimilarityIndex(store),
                HashingEmbeddingProvider(),
                batch,
                config.insertion,
            )
        )
    except TaskInsertionError as e:
        click.echo(f"✗ Insertion failed: {e}", err=True)
        click.echo(json.dumps(e.to_dict(), indent=2))
        sys.exit(1)

    save_graph(store, config.store.graph_path)
    click.echo(f"✓ Inserted {result.inserted_count} bridging task(s)")
    if result.cycles_resolved:
        click.echo(f"  Removed {result.cycles_resolved} conflicting relationship(s)")

    if plan_file:
        plan = PrioritizedPlan.model_validate(_read_structured_file(plan_file) or {})
        updated = integrate_into_plan(plan, result.bridges)
        with open(plan_file, "w") as f:
            json.dump(updated.model_dump(mode="json"), f, indent=2)
        click.echo(f"✓ Updated plan: {plan_file}")

    click.echo(json.dumps(result.model_dump(mode="json"), indent=2))


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Check that the dependency graph is acyclic."""
    config = _load_config_or_exit(ctx)

    try:
        store = load_graph(config.store.graph_path, config.store.recovery_page_size)
    except GraphSnapshotError as e:
        click.echo(f"✗ Graph error: {e}", err=True)
        sys.exit(1)

    edges = asyncio.run(store.all_edges())
    adjacency = build_adjacency(edges)
    if not has_cycle(adjacency):
        click.echo(f"✓ Graph is acyclic ({len(store.nodes)} tasks, {len(edges)} relationships)")
        return

    cycle = find_cycle_path(adjacency)
    texts = {task_id: node.text for task_id, node in store.nodes.items()}
    click.echo("✗ Cycle detected:", err=True)
    for task_id in cycle:
        click.echo(f"  {task_id[:8]}  {texts.get(task_id, '(unknown task)')}", err=True)
    sys.exit(1)


if __name__ == "__main__":
    cli()
