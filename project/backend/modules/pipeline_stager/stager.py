"""
Pipeline staging for a generation job.

Runs the original group first, then every other group strictly one after the
other: derive the group's Master, pass it through the quality gate, and only
then fan its poses out through the task pool.
"""

from typing import List

from shared.errors import JobCancelledError, QualityGateError, describe_error
from shared.logging import get_logger
from shared.models.generation import GenerationPayload
from shared.models.job import Group, Job, JobKind
from shared.models.task import Task, TaskStatus
from modules.task_pool.executor import TaskPoolExecutor
from modules.pipeline_stager.context import JobContext
from modules.pipeline_stager.prompts import build_master_instruction, build_pose_instruction
from modules.pipeline_stager.quality_gate import QUALITY_GATE_REJECTED

logger = get_logger("pipeline_stager")


def expand_job(job: Job) -> List[Task]:
    """
    Expand a job into one pending task per (group, pose), original group first.

    Args:
        job: Job to expand

    Returns:
        len(job.groups) * len(job.poses) pending tasks
    """
    return [
        Task(id=Task.make_id(group.id, pose), group_id=group.id, pose=pose)
        for group in job.groups
        for pose in job.poses
    ]


class PipelineStager:
    """Sequences a job's groups and hands ready tasks to the pool."""

    def __init__(self, context: JobContext):
        self.context = context

    async def run_job(self, job: Job, pool_executor: TaskPoolExecutor) -> None:
        """
        Process every group of `job`, then release the job context.

        Group failures never abort other groups. Cancellation stops before the
        next group or pose dispatch and leaves untouched tasks pending.
        """
        ctx = self.context
        try:
            original = ctx.group(job.original.id)
            original.master = job.base_artifact
            logger.info(
                f"Processing original group ({len(job.poses)} poses)",
                extra={"group_id": original.id, "poses": len(job.poses)}
            )
            await self._run_group_poses(job, original, pool_executor)

            variants = [ctx.group(g.id) for g in job.variant_groups]
            for index, group in enumerate(variants, start=1):
                if ctx.cancel_signal.cancelled:
                    logger.info(
                        f"Cancellation observed before group {group.id}",
                        extra={"group_id": group.id}
                    )
                    break

                ctx.emit_status(f"Preparing colour group {index}/{len(variants)}: {group.label}")
                try:
                    master = await self.resolve_master(job, group)
                except JobCancelledError:
                    break
                except Exception as e:
                    if ctx.cancel_signal.cancelled:
                        break
                    error_type, message = describe_error(e)
                    logger.error(
                        f"Group {group.id} Master failed: {str(e)}",
                        extra={"group_id": group.id, "error": str(e), "error_type": error_type}
                    )
                    ctx.store.fail_group(group.id, message, error_type)
                    continue

                group.master = master
                await self._run_group_poses(job, group, pool_executor)
        finally:
            ctx.release()

    async def resolve_master(self, job: Job, group: Group) -> str:
        """
        Derive a group's Master and run it through the quality gate.

        Raises:
            QualityGateError: If the gate rejects the Master
            Exception: Any Master derivation error
        """
        master = await self.derive_master(job, group)
        passed = await self.context.quality_gate(master, group)
        if not passed:
            raise QualityGateError(QUALITY_GATE_REJECTED, job_id=job.id)
        logger.info(
            f"Master ready for group {group.id}",
            extra={"group_id": group.id}
        )
        return master

    async def derive_master(self, job: Job, group: Group) -> str:
        """Dedicated remote call recolouring the base artifact for a group."""
        ctx = self.context
        instruction = build_master_instruction(group)
        images = [job.base_artifact]
        if group.reference_artifact:
            images.append(group.reference_artifact)

        payload = GenerationPayload(
            images=images,
            instruction=instruction,
            resolution=job.resolution,
            aspect_ratio=job.aspect_ratio
        )
        return await ctx.selector().generate(
            ctx.primary_backend,
            ctx.secondary_backend,
            payload,
            ctx.call_fn,
            on_status=lambda message: ctx.emit_status(f"[{group.id}] {message}")
        )

    def pose_payload(self, job: Job, group: Group, pose: str) -> GenerationPayload:
        """Payload for one pose task, generated from the group's Master."""
        has_background = job.background_artifact is not None and job.kind != JobKind.VARIATION
        images = [group.master or job.base_artifact]
        if has_background:
            images.append(job.background_artifact)

        return GenerationPayload(
            images=images,
            instruction=build_pose_instruction(
                job.kind,
                pose,
                job.micro_variation,
                user_prompt=job.user_prompt,
                has_background=has_background
            ),
            resolution=job.resolution,
            aspect_ratio=job.aspect_ratio
        )

    async def _run_group_poses(self, job: Job, group: Group, pool_executor: TaskPoolExecutor) -> None:
        ctx = self.context
        tasks = [t for t in ctx.store.tasks_for_group(group.id) if t.status == TaskStatus.PENDING]
        if not tasks:
            return
        selector = ctx.selector()

        async def worker(task: Task) -> str:
            payload = self.pose_payload(job, group, task.pose)
            return await selector.generate(
                ctx.primary_backend,
                ctx.secondary_backend,
                payload,
                ctx.call_fn,
                on_status=lambda message: ctx.emit_status(f"[{task.id}] {message}")
            )

        await pool_executor.run(tasks, ctx.concurrency_limit(), worker)
