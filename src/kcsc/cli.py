"""Typer-powered command line for ``kcsc``.

A single command walks the operator through moving one PersistentVolumeClaim
to a different storage class. Every mutating step is announced and confirmed
before it runs; answering anything other than ``Y`` stops the migration.
"""
from __future__ import annotations

import textwrap
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.status import Status

from . import get_version
from .config import AppConfig, ConfigError, load_config
from .discovery import DiscoveryError, discover
from .exit_codes import ExitCode
from .identity import RunIdentity
from .logging import OperationScope, StructuredLogger
from .migration import (
    AbortReason,
    MigrationPlan,
    MigrationReport,
    PromptConfirmationGate,
    RunContext,
    SequencerState,
    StepSequencer,
    Transition,
    build_plan,
    create_step_context,
)
from .providers import KubernetesError, KubernetesProvider, ResourceClient

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to kcsc's YAML config file.",
)

KUBECONFIG_OPTION = typer.Option(
    None,
    "--kubeconfig",
    dir_okay=False,
    help="Path to the kubeconfig file (defaults to $KUBECONFIG or ~/.kube/config).",
)

CONTEXT_OPTION = typer.Option(
    ...,
    "--context",
    help="The name of the kubeconfig context to use.",
)

NAMESPACE_OPTION = typer.Option(
    ...,
    "--namespace",
    "-n",
    help="The namespace containing the PVC to convert.",
)

TO_STORAGE_CLASS_OPTION = typer.Option(
    ...,
    "--to-storage-class",
    help="The name of the new storage class for the PVC.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Move a PersistentVolumeClaim to a different storage class.

        The PVC is deleted and recreated under the new class, and its data is
        copied across by a Job. Stop every workload that mounts the PVC (and
        any controller that would recreate it) before running this.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by the command."""

    config: AppConfig
    client: ResourceClient


class ProgressLine:
    """Single, continuously rewritten status line for the wait loops."""

    def __init__(self, target: Console) -> None:
        """Bind the line to *target*."""
        self._console = target
        self._status: Status | None = None

    def update(self, message: str) -> None:
        """Replace the current progress text with *message*."""
        text = f"    {escape(message)}"
        if self._status is None:
            self._status = self._console.status(text)
            self._status.start()
        else:
            self._status.update(text)

    def stop(self) -> None:
        """Remove the progress line, if one is showing."""
        if self._status is not None:
            self._status.stop()
            self._status = None


def _create_client(context: str, kubeconfig: Path | None) -> ResourceClient:
    return KubernetesProvider.from_kubeconfig(context, config_file=kubeconfig)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"kcsc {get_version()}")
        raise typer.Exit(code=ExitCode.OK)


def _render_discovery(run: RunContext) -> None:
    pods = ", ".join(f"[blue]{escape(name)}[/blue]" for name in run.mounting_pods)
    source_class = run.source_storage_class or '""'
    console.print("[underline]Here's what we've found:[/underline]")
    console.print(
        f"    PVC [blue]{escape(run.claim_name)}[/blue] (storage class "
        f"[blue]{escape(source_class)}[/blue]) is currently bound to PV "
        f"[blue]{escape(run.volume_name)}[/blue], and mounted by pods \\[{pods}]."
    )
    console.print(f"    Temporary resources for this run are tagged [blue]{run.run_id}[/blue].")
    console.print()


def _render_plan(plan: MigrationPlan) -> None:
    console.print(
        "[underline]If you approve, we will carry out the following steps. You will be "
        "given the opportunity to stop the process after each step.[/underline]"
    )
    for index, step in enumerate(plan.steps):
        console.print(f"    {index + 1}. {escape(step.description)}")
    console.print()


def _format_error_detail(transition: Transition) -> str:
    result = transition.result
    if result is None or result.error is None:
        return ""
    error = result.error
    if error.body:
        return f"{error} ({error.body})"
    return str(error)


def _make_listener(op: OperationScope, progress: ProgressLine) -> Callable[[Transition], None]:
    def _listener(transition: Transition) -> None:
        step = transition.step
        number = (transition.index or 0) + 1
        if transition.state is SequencerState.AWAITING_CONFIRMATION and step is not None:
            console.print(f"Ready to run Step {number}: {escape(step.description)}")
        elif transition.state is SequencerState.STEP_SUCCEEDED and step is not None:
            progress.stop()
            duration = transition.result.duration_ms if transition.result else None
            console.print(f"    [green]Step {number} was successful.[/green]")
            op.add_step(step.id, status="success", detail=f"{duration} ms")
        elif transition.state is SequencerState.ABORTED and step is not None:
            progress.stop()
            result = transition.result
            if result is not None and result.status == "declined":
                console.print(f"    [yellow]Stopped by request before Step {number}.[/yellow]")
                op.add_step(step.id, status="skipped", detail="declined")
                return
            detail = _format_error_detail(transition)
            suffix = f" (error: {escape(detail)})" if detail else ""
            console.print(f"    [red]Step {number} failed{suffix}. Quitting.[/red]")
            op.add_step(step.id, status="failed", detail=detail or None)

    return _listener


def _finish(op: OperationScope, run: RunContext, report: MigrationReport) -> None:
    context = {
        "run_id": run.run_id,
        "claim": run.claim_ref.to_dict(),
        "volume": run.volume_ref.to_dict(),
        "temp_claim": run.temp_claim_ref.to_dict(),
        "copy_job": run.copy_job_ref.to_dict(),
    }
    if report.completed:
        console.print()
        console.print("[green]Finished! Now you can recreate your Pods![/green]")
        console.print(
            f"    The old PV [blue]{escape(run.volume_name)}[/blue] was kept; delete it "
            "once you have verified the data."
        )
        op.success("Migration completed.", changed=len(report.results), context=context)
        return

    failed = report.failed_step
    changed = sum(1 for result in report.results if result.status == "succeeded")
    if report.reason is AbortReason.DECLINED:
        message = "Migration stopped by request."
        errors: list[str] = [message]
    else:
        step_label = f"Step {failed.index + 1} ({failed.step_id})" if failed else "A step"
        message = f"{step_label} failed; migration aborted."
        errors = [message]
        if report.error is not None:
            errors.append(str(report.error))
            context["error"] = report.error.to_dict()
    if changed:
        console.print(
            "[yellow]The cluster was left as the last successful step left it. "
            f"Look for resources tagged {run.run_id} to clean up by hand.[/yellow]"
        )
    op.error(message, errors=errors, rc=int(ExitCode.ABORTED), changed=changed, context=context)
    raise typer.Exit(code=int(ExitCode.ABORTED))


@app.command()
def migrate(
    pvc: str = typer.Argument(..., metavar="PVC", help="The name of the PVC to convert."),
    context: str = CONTEXT_OPTION,
    namespace: str = NAMESPACE_OPTION,
    to_storage_class: str = TO_STORAGE_CLASS_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
    kubeconfig: Path | None = KUBECONFIG_OPTION,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show the kcsc version and exit.",
    ),
) -> None:
    """Move PVC to the storage class given by --to-storage-class."""
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc

    logger = StructuredLogger(config.logs_dir)
    with logger.operation(
        "migrate",
        args={
            "context": context,
            "namespace": namespace,
            "to_storage_class": to_storage_class,
            "pvc": pvc,
        },
        target={"kind": "PersistentVolumeClaim", "namespace": namespace, "name": pvc},
    ) as op:
        try:
            client = _create_client(context, kubeconfig or config.kubeconfig)
        except KubernetesError as exc:
            _command_error(op, str(exc))
        runtime = RuntimeContext(config=config, client=client)

        console.print("Gathering info...")
        identity = RunIdentity.generate(config.temp_prefix)
        try:
            run = discover(
                runtime.client,
                namespace=namespace,
                claim_name=pvc,
                target_storage_class=to_storage_class,
                identity=identity,
            )
        except DiscoveryError as exc:
            _command_error(op, str(exc))
        op.add_step(
            "discovery",
            status="success",
            detail=f"volume={run.volume_name} pods={','.join(run.mounting_pods)}",
        )
        console.print("Done!")
        console.print()

        _render_discovery(run)
        plan = build_plan(run)
        _render_plan(plan)

        progress = ProgressLine(console)
        step_context = create_step_context(
            plan,
            runtime.client,
            runtime.config,
            report=progress.update,
        )
        sequencer = StepSequencer(
            plan,
            step_context,
            PromptConfirmationGate(),
            listener=_make_listener(op, progress),
        )
        try:
            report = sequencer.run()
        finally:
            progress.stop()
        _finish(op, run, report)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
