"""Command line interface for running sanitizeflow workers."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from sanitizeflow import create_dispatcher, get_repository, get_transport, load_config
from sanitizeflow.persistence import WorkflowStatus

app = typer.Typer(help="CLI for sanitizeflow workflows")

workflow_app = typer.Typer(help="Commands for inspecting workflow instances")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", help="Logging level for worker output"),
) -> None:
    """Sanitizeflow CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("run")
def run_object(
    object_id: str,
    instance_id: Optional[str] = typer.Option(None, help="Instance id to start or resume"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.yaml"),
) -> None:
    """
    Run the sanitization workflow for one object in the source container.

    Example:
        sanitizeflow run invoice.docx
        sanitizeflow run invoice.docx --instance-id 6f1c...
    """
    config = load_config(config_path)
    transport = get_transport(config=config)
    dispatcher = create_dispatcher(config, transport=transport)

    async def _run():
        try:
            return await dispatcher.dispatch(object_id, instance_id=instance_id)
        finally:
            await transport.disconnect()

    instance = asyncio.run(_run())
    typer.echo(f"{instance.id}\t{instance.status.value}\t{instance.state.value}")
    if instance.status != WorkflowStatus.COMPLETED:
        raise typer.Exit(code=1)


@app.command("listen")
def listen(
    lifespan: Optional[float] = typer.Option(None, help="Seconds to listen (default: forever)"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.yaml"),
) -> None:
    """
    Consume object-created events and start one workflow per object.

    Pending instances left by a previous process are resumed first.
    """
    config = load_config(config_path)
    transport = get_transport(config=config)
    dispatcher = create_dispatcher(config, transport=transport)

    async def _listen() -> None:
        await transport.connect()
        try:
            await dispatcher.runner.resume_pending()
            await dispatcher.listen(transport, config.transport.trigger_topic, lifespan=lifespan)
        finally:
            await transport.disconnect()

    typer.echo(f"Listening on {config.transport.trigger_topic}")
    asyncio.run(_listen())


@app.command("resume")
def resume(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.yaml"),
) -> None:
    """Replay every instance that has not completed, e.g. after a queue outage."""
    config = load_config(config_path)
    transport = get_transport(config=config)
    dispatcher = create_dispatcher(config, transport=transport)

    async def _resume():
        try:
            return await dispatcher.runner.resume_pending()
        finally:
            await transport.disconnect()

    instances = asyncio.run(_resume())
    if not instances:
        typer.echo("No pending workflows")
        return
    for wf in instances:
        typer.echo(f"{wf.id}\t{wf.status.value}\t{wf.state.value}")


@workflow_app.command("list")
def workflow_list(
    status: Optional[WorkflowStatus] = typer.Option(None, help="Only show this status"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.yaml"),
) -> None:
    """
    List workflow instances with their status and state.

    Example:
        sanitizeflow workflow list --status running
    """
    repo = get_repository(config=load_config(config_path))
    workflows = asyncio.run(repo.list_workflows(status=status))
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.object_id}\t{wf.status.value}\t{wf.state.value}")


@workflow_app.command("show")
def workflow_show(
    instance_id: str,
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.yaml"),
) -> None:
    """Show an instance and its recorded step history."""
    repo = get_repository(config=load_config(config_path))
    wf = asyncio.run(repo.get_workflow(instance_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {wf.id}: {wf.status.value} ({wf.state.value})")
    typer.echo(f"Object: {wf.object_id}")
    if wf.transaction_id:
        typer.echo(f"Transaction: {wf.transaction_id}")
    for step in wf.history:
        outcome = f"error {step.error.type}: {step.error.message}" if step.error else "ok"
        typer.echo(
            f"- {step.step_name}: {outcome} (attempts={step.attempts}, {step.completed_at.isoformat()})"
        )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
