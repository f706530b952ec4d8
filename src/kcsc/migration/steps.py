"""The fixed six-step catalog that moves a claim to a new storage class."""

from __future__ import annotations

from .. import discovery
from .manifests import (
    REMOVE_CLAIM_REF_PATCH,
    RETAIN_PATCH,
    build_copy_job,
    build_replacement_claim,
    build_temp_claim,
)
from .models import MigrationPlan, PollResult, RunContext, Step, StepContext
from .polling import claim_deletion_status, job_completion_status, poll_until


def protect_volume(ctx: StepContext) -> bool:
    """Switch the bound volume's reclaim policy to Retain."""
    ctx.client.patch_volume(ctx.run.volume_name, RETAIN_PATCH)
    return True


def delete_claim(ctx: StepContext) -> bool:
    """Delete the original claim and block until it is gone."""
    run = ctx.run
    ctx.client.delete_claim(run.namespace, run.claim_name)

    def _report_blockers(attempt: int) -> None:
        pods = discovery.resolve_mounting_pods(ctx.client, run.claim_name, run.namespace)
        run.refresh_mounting_pods(discovery.pod_names(pods))
        ctx.report(
            "Waiting for the deletion to complete. "
            f"Pods still using the claim: [{', '.join(run.mounting_pods)}]"
        )

    result = poll_until(
        lambda: claim_deletion_status(ctx.client, run.namespace, run.claim_name),
        interval=ctx.poll.interval,
        timeout=ctx.poll.timeout,
        on_pending=_report_blockers,
        sleep=ctx.sleep,
    )
    return result is PollResult.SUCCEEDED


def create_replacement_claim(ctx: StepContext) -> bool:
    """Recreate the claim under the target storage class."""
    body = build_replacement_claim(ctx.run, ctx.reserved_annotation_prefixes)
    ctx.client.create_claim(ctx.run.namespace, body)
    return True


def expose_old_volume(ctx: StepContext) -> bool:
    """Release the old volume and bind it to a temporary claim."""
    run = ctx.run
    ctx.client.patch_volume(run.volume_name, REMOVE_CLAIM_REF_PATCH)
    ctx.client.create_claim(run.namespace, build_temp_claim(run))
    return True


def copy_data(ctx: StepContext) -> bool:
    """Run the copy Job and wait for it to finish."""
    run = ctx.run
    job_name = run.identity.copy_job_name()
    ctx.client.create_job(run.namespace, build_copy_job(run, ctx.copy_job))

    result = poll_until(
        lambda: job_completion_status(ctx.client.read_job_status(run.namespace, job_name)),
        interval=ctx.poll.interval,
        timeout=ctx.poll.timeout,
        on_pending=lambda attempt: ctx.report(f"Waiting for the Job {job_name} to complete."),
        sleep=ctx.sleep,
    )
    return result is PollResult.SUCCEEDED


def clean_up(ctx: StepContext) -> bool:
    """Delete the copy Job and the temporary claim; keep the old volume."""
    run = ctx.run
    ctx.client.delete_job(run.namespace, run.identity.copy_job_name())
    ctx.client.delete_claim(run.namespace, run.identity.temp_claim_name())
    return True


def build_plan(run: RunContext) -> MigrationPlan:
    """Return the ordered plan for *run*."""
    volume = run.volume_name
    claim = run.claim_name
    target = run.target_storage_class
    steps = (
        Step(
            id="volume.retain",
            description=(
                f"Change the reclaim policy of PV {volume} "
                "(.spec.persistentVolumeReclaimPolicy) to Retain, so the PV is not "
                "deleted together with the PVC."
            ),
            run=protect_volume,
        ),
        Step(
            id="claim.delete",
            description=(
                f"Delete the PVC {claim}. Any Pods mounting it must go away first "
                "(scale Deployments/StatefulSets/ReplicaSets to 0) before the "
                "deletion can complete."
            ),
            run=delete_claim,
        ),
        Step(
            id="claim.recreate",
            description=(
                f"Create a new PVC {claim} with storage class {target}. "
                "Its provisioner will create a fresh PV."
            ),
            run=create_replacement_claim,
        ),
        Step(
            id="volume.expose",
            description=(
                f"Detach PV {volume} from the old claim and bind it to the temporary "
                f"PVC {run.identity.temp_claim_name()} so the old data can be mounted."
            ),
            run=expose_old_volume,
        ),
        Step(
            id="data.copy",
            description=(
                f"Run the Job {run.identity.copy_job_name()} to copy the data. Its Pod "
                "mounts both the old PV and the new one."
            ),
            run=copy_data,
        ),
        Step(
            id="cleanup",
            description=(
                "Delete the copy Job and the temporary PVC. The old PV is kept; "
                "delete it manually once you have checked the data in the new PV."
            ),
            run=clean_up,
        ),
    )
    return MigrationPlan(context=run, steps=steps)


__all__ = [
    "build_plan",
    "clean_up",
    "copy_data",
    "create_replacement_claim",
    "delete_claim",
    "expose_old_volume",
    "protect_volume",
]
