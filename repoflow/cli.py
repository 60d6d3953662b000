"""Command line interface for serving and inspecting repoflow runs."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer

from .config import RepoflowConfig, load_config
from .constants import CREATE_PULL_REQUEST
from .contracts import RunDescriptor
from .errors import ValidationError
from .logging_config import configure_logging
from .persistence import RunCheckpoint, get_repository
from .runtime import build_runtime

app = typer.Typer(help="CLI for repoflow runs")

run_app = typer.Typer(help="Commands for starting and inspecting runs")
app.add_typer(run_app, name="run")


def _config(ctx: typer.Context) -> RepoflowConfig:
    return ctx.obj["config"]


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to a YAML config file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """repoflow CLI entry point."""
    loaded = load_config(str(config) if config else None)
    configure_logging(loaded.log_level, verbose=verbose)
    ctx.obj = {"config": loaded}


@app.command("serve")
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(8000, help="Port to listen on"),
) -> None:
    """
    Serve the HTTP API.

    Unfinished runs found in the checkpoint repository are resumed on startup
    and the watchdog flags steps that run longer than their configured bound.

    Example:
        repoflow serve --port 8080
    """
    import uvicorn

    from .api import create_app

    runtime = build_runtime(_config(ctx))
    if runtime.store is None:
        typer.secho(
            "serve needs a local status store; set status.backend to 'inmemory'",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    api = create_app(
        runtime.engine, runtime.store, watchdog=runtime.watchdog, resume_pending=True
    )
    uvicorn.run(api, host=host, port=port, log_level=runtime.config.log_level.lower())


@run_app.command("start")
def run_start(
    ctx: typer.Context,
    prompt: str = typer.Option(..., help="The change to make"),
    repo: str = typer.Option(..., help="Repository URL"),
    credential: str = typer.Option(
        ..., envvar="REPOFLOW_CREDENTIAL", help="Token used to push and open the pull request"
    ),
    recipient: Optional[str] = typer.Option(None, help="Who to notify once the PR is open"),
) -> None:
    """
    Run the pipeline in-process and wait for it to finish.

    Example:
        repoflow run start --prompt "Add a footer" --repo https://github.com/acme/site
    """
    try:
        descriptor = RunDescriptor.from_request(
            {
                "prompt": prompt,
                "repoLocator": repo,
                "credential": credential,
                "recipient": recipient,
            }
        )
    except ValidationError as exc:
        typer.secho(f"{exc.error_code}: {exc.message}", fg=typer.colors.RED)
        for suggestion in exc.suggestions:
            typer.echo(f"  - {suggestion}")
        raise typer.Exit(code=2)

    runtime = build_runtime(_config(ctx))

    async def _run() -> Optional[RunCheckpoint]:
        run_id = await runtime.engine.start(descriptor)
        typer.echo(f"Started run {run_id}")
        return await runtime.engine.wait(run_id)

    checkpoint = asyncio.run(_run())
    _report(checkpoint)
    if checkpoint is None or checkpoint.status != "completed":
        raise typer.Exit(code=1)


@run_app.command("list")
def run_list(
    ctx: typer.Context,
    status: Optional[str] = typer.Option(None, help="Only show runs with this status"),
) -> None:
    """
    List runs recorded in the checkpoint repository.

    Example:
        repoflow run list --status running
        # Output: 3f1c...    running    2/4 steps
    """
    repo = get_repository(config=_config(ctx))
    runs = asyncio.run(repo.list_runs(status=status))
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.run_id}\t{run.status}\t{len(run.outputs)} step(s) recorded")


@run_app.command("show")
def run_show(ctx: typer.Context, run_id: str) -> None:
    """Show the checkpoint of one run, with the credential masked."""
    repo = get_repository(config=_config(ctx))
    checkpoint = asyncio.run(repo.get_run(run_id))
    if checkpoint is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    data = checkpoint.model_dump(mode="json")
    if data["descriptor"].get("credential"):
        data["descriptor"]["credential"] = "**********"
    typer.echo(json.dumps(data, indent=2))


@run_app.command("resume")
def run_resume(
    ctx: typer.Context,
    run_id: Optional[str] = typer.Argument(None, help="Run to resume; all unfinished runs if omitted"),
) -> None:
    """Resume one or every unfinished run and wait for them to finish."""
    runtime = build_runtime(_config(ctx))

    async def _resume() -> List[Optional[RunCheckpoint]]:
        if run_id is None:
            run_ids = await runtime.engine.resume_pending()
        else:
            try:
                await runtime.engine.resume(run_id)
            except KeyError:
                typer.echo("Run not found")
                raise typer.Exit(code=1)
            run_ids = [run_id]
        return [await runtime.engine.wait(rid) for rid in run_ids]

    checkpoints = asyncio.run(_resume())
    if not checkpoints:
        typer.echo("No unfinished runs")
        return
    for checkpoint in checkpoints:
        _report(checkpoint)


def _report(checkpoint: Optional[RunCheckpoint]) -> None:
    if checkpoint is None:
        typer.echo("Run not found")
        return
    typer.echo(f"Run {checkpoint.run_id}: {checkpoint.status}")
    published = checkpoint.outputs.get(CREATE_PULL_REQUEST)
    if published:
        typer.echo(f"Pull request: {published['pr_url']}")
    if checkpoint.error:
        typer.secho(
            f"Failed at {checkpoint.error.get('step_id')}: {checkpoint.error.get('message')}",
            fg=typer.colors.RED,
        )
