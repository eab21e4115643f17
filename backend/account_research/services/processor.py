from __future__ import annotations

import asyncio
from dataclasses import dataclass
import enum
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from . import job_store
from .collaborators import (
    CategorizationCollaborator,
    CompanyIdentity,
    ResearchCollaborator,
)
from .errors import (
    AccountNotFound,
    CollaboratorError,
    InvalidAccountState,
    JobConflict,
    JobNotFound,
    UnknownSection,
)
from .events import EventType
from .perspectives import PERSPECTIVES, ResearchType, has_research, perspectives_for
from .registry import ActiveJobRegistry, JobHandle
from ..core.config import MAX_CONCURRENCY, Settings, get_settings
from ..models.account import Account, AccountStatus
from ..models.processing_job import JobStatus, JobType, ProcessingJob

logger = logging.getLogger(__name__)


class ProcessingMode(str, enum.Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


@dataclass
class ProcessingOptions:
    research_type: ResearchType = ResearchType.BOTH
    mode: Optional[ProcessingMode] = None
    concurrency: Optional[int] = None
    model: Optional[str] = None


@dataclass
class _RunStats:
    finished: int = 0


class JobProcessor:
    """
    Drives processing jobs from ``pending`` to a terminal status.

    ``start`` registers the job in the shared :class:`ActiveJobRegistry` and
    schedules the loop on the running event loop; it returns immediately.
    The loop runs one worker (sequential) or up to ``concurrency`` workers
    (parallel). Each worker claims the next pending account, researches it per
    perspective, categorizes it and records the outcome. A failing account is
    recorded as ``failed`` and the loop moves on; nothing is retried here.

    All database work goes through short-lived sessions in worker threads so
    collaborator calls and store writes are both suspension points.
    """

    def __init__(
        self,
        registry: ActiveJobRegistry,
        session_factory: Callable[[], Session],
        research: ResearchCollaborator,
        categorizer: CategorizationCollaborator,
        settings: Settings | None = None,
    ) -> None:
        self.registry = registry
        self.session_factory = session_factory
        self.research = research
        self.categorizer = categorizer
        self.settings = settings or get_settings()

    # ── plumbing ────────────────────────────────────────────────────────────

    async def _db(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        def _call() -> Any:
            db = self.session_factory()
            try:
                return fn(db, *args, **kwargs)
            finally:
                db.close()

        return await asyncio.to_thread(_call)

    async def _call_collaborator(self, coro, label: str):
        timeout = self.settings.COLLABORATOR_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise CollaboratorError(f"{label} timed out after {timeout:g}s") from e

    def _resolve_options(
        self, job: ProcessingJob, options: ProcessingOptions | None
    ) -> ProcessingOptions:
        if options is None:
            options = ProcessingOptions(
                research_type=ResearchType(job.research_type or ResearchType.BOTH.value),
                mode=ProcessingMode(job.processing_mode) if job.processing_mode else None,
                concurrency=job.concurrency,
                model=job.model,
            )

        mode = options.mode
        if mode is None:
            mode = (
                ProcessingMode.PARALLEL
                if self.settings.ENABLE_PARALLEL_PROCESSING
                else ProcessingMode.SEQUENTIAL
            )
        concurrency = options.concurrency or self.settings.PROCESSING_CONCURRENCY
        if not 1 <= concurrency <= MAX_CONCURRENCY:
            raise ValueError(f"concurrency must be between 1 and {MAX_CONCURRENCY}")

        return ProcessingOptions(
            research_type=ResearchType(options.research_type),
            mode=ProcessingMode(mode),
            concurrency=concurrency,
            model=options.model,
        )

    # ── public operations ───────────────────────────────────────────────────

    def is_active(self, job_id: int) -> bool:
        return self.registry.is_active(job_id)

    async def start(self, job_id: int, options: ProcessingOptions | None = None) -> bool:
        """
        Schedule the loop for ``job_id``. Returns False if this process
        already runs a loop for it.
        """
        if self.registry.is_active(job_id):
            logger.info("Job %s is already being processed", job_id, extra={"job_id": job_id})
            return False

        job = await self._db(job_store.get_job, job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        if job.status not in (JobStatus.PENDING, JobStatus.PROCESSING):
            raise JobConflict(f"Job {job_id} is {job.status.value}")

        opts = self._resolve_options(job, options)

        handle = self.registry.register(job_id)
        if handle is None:
            return False
        handle.task = asyncio.create_task(self._run(job_id, opts, handle), name=f"job-{job_id}")

        logger.info(
            "Scheduled job %s (%s, concurrency %s, research %s)",
            job_id,
            opts.mode.value,
            opts.concurrency,
            opts.research_type.value,
            extra={"job_id": job_id, "step": "start"},
        )
        return True

    async def cancel(self, job_id: int) -> bool:
        """
        Cooperative cancel: workers stop before their next claim. Returns False
        (and changes nothing) when the job is already terminal.
        """
        job = await self._db(job_store.get_job, job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")

        cancelled = await self._db(job_store.cancel_job, job_id)
        self.registry.wake(job_id)
        if cancelled:
            logger.info("Job %s cancelled", job_id, extra={"job_id": job_id, "step": "cancel"})
        return cancelled

    async def pause(self, job_id: int) -> bool:
        if await self._db(job_store.get_job, job_id) is None:
            raise JobNotFound(f"Job {job_id} not found")
        return await self._db(job_store.set_job_paused, job_id, True)

    async def unpause(self, job_id: int) -> bool:
        if await self._db(job_store.get_job, job_id) is None:
            raise JobNotFound(f"Job {job_id} not found")
        changed = await self._db(job_store.set_job_paused, job_id, False)
        self.registry.wake(job_id)
        return changed

    async def resume(self, job_id: int, options: ProcessingOptions | None = None) -> int:
        """
        Restart the loop of a job with no live worker (interrupted by a restart,
        cancelled, or never started). Only ``pending`` accounts are processed;
        accounts orphaned in ``processing`` are returned to ``pending`` first.
        Returns the number of accounts queued.
        """
        if self.registry.is_active(job_id):
            raise JobConflict(f"Job {job_id} is already running")

        job = await self._db(job_store.get_job, job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")

        pending = await self._db(job_store.prepare_resume, job_id)
        if pending == 0:
            raise InvalidAccountState(f"No pending accounts found for job {job_id}")

        if not await self.start(job_id, options):
            raise JobConflict(f"Job {job_id} is already running")

        logger.info(
            "Resumed job %s with %s pending accounts",
            job_id,
            pending,
            extra={"job_id": job_id, "step": "resume"},
        )
        return pending

    async def rerun_sections(
        self,
        account_id: int,
        perspective_name: str,
        section_keys: List[str],
        additional_context: str | None = None,
        model: str | None = None,
    ) -> Dict[str, str]:
        """
        Re-research chosen sections of one perspective outside any job.

        Sections run in order and each one is saved as soon as it returns, so a
        failure part-way keeps the sections already rewritten. Accounts a job
        is working on are refused.
        """
        perspective = PERSPECTIVES.get(perspective_name)
        if perspective is None:
            raise UnknownSection(f"Unknown perspective '{perspective_name}'")
        by_key = {s.key: s for s in perspective.sections}
        unknown = [key for key in section_keys if key not in by_key]
        if unknown:
            raise UnknownSection(
                f"Invalid {perspective.title} section keys: {', '.join(unknown)}. "
                f"Valid keys: {', '.join(by_key)}"
            )

        account = await self._db(job_store.get_account, account_id)
        if account is None:
            raise AccountNotFound([account_id])
        if account.research_status == AccountStatus.PROCESSING:
            raise InvalidAccountState("Account is currently being processed", [account_id])

        company = CompanyIdentity(
            company_name=account.company_name,
            domain=account.domain,
            industry=account.industry,
        )
        existing = {
            s.key: getattr(account, s.column)
            for s in perspective.sections
            if getattr(account, s.column)
        }
        results: Dict[str, str] = {}
        for key in section_keys:
            section = by_key[key]
            text = await self._call_collaborator(
                self.research.research(
                    company,
                    perspective,
                    key,
                    context={**existing, **results},
                    model=model,
                    additional_context=additional_context,
                ),
                f"{perspective.title} research ({section.label})",
            )
            await self._db(job_store.save_research, account_id, perspective, {key: text}, model)
            results[key] = text

        logger.info(
            "Re-ran %s sections %s for %s",
            perspective.title,
            ", ".join(section_keys),
            account.company_name,
            extra={"account_id": account_id, "perspective": perspective.name, "step": "rerun"},
        )
        return results

    async def wait(self, job_id: int) -> None:
        handle = self.registry.get(job_id)
        if handle is not None and handle.task is not None:
            await handle.task

    async def shutdown(self) -> None:
        """Cancel live loops; their jobs stay ``processing`` and can be resumed."""
        handles = [self.registry.get(job_id) for job_id in self.registry.active_job_ids()]
        tasks = [h.task for h in handles if h is not None and h.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ── loop ────────────────────────────────────────────────────────────────

    async def _run(self, job_id: int, opts: ProcessingOptions, handle: JobHandle) -> None:
        stats = _RunStats()
        try:
            job = await self._db(
                job_store.mark_job_started,
                job_id,
                research_type=opts.research_type.value,
                mode=opts.mode.value,
                concurrency=opts.concurrency,
                model=opts.model,
            )
            if job is None:
                logger.info(
                    "Job %s is no longer pending or processing",
                    job_id,
                    extra={"job_id": job_id},
                )
                return

            workers = 1 if opts.mode == ProcessingMode.SEQUENTIAL else opts.concurrency
            tasks = [
                asyncio.create_task(self._worker(job, opts, handle, stats))
                for _ in range(workers)
            ]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            current = await self._db(job_store.get_job, job_id)
            if current is None or current.status != JobStatus.PROCESSING:
                logger.info(
                    "Job %s stopped with status %s",
                    job_id,
                    current.status.value if current else "deleted",
                    extra={"job_id": job_id, "step": "stopped"},
                )
                return

            pending = await self._db(job_store.count_accounts, job_id, AccountStatus.PENDING)
            if pending == 0 and await self._db(job_store.finish_job, job_id):
                logger.info(
                    "Job %s completed",
                    job_id,
                    extra={"job_id": job_id, "step": "completed"},
                )
        except Exception as e:
            logger.exception(
                "Processing loop for job %s failed",
                job_id,
                extra={"job_id": job_id, "step": "failed"},
            )
            if stats.finished == 0:
                await self._db(job_store.fail_job, job_id, str(e) or type(e).__name__)
        finally:
            self.registry.unregister(job_id, handle)

    async def _worker(
        self,
        job: ProcessingJob,
        opts: ProcessingOptions,
        handle: JobHandle,
        stats: _RunStats,
    ) -> None:
        delay = self.settings.ACCOUNT_DELAY_MS / 1000
        while True:
            # cleared before the status read so a later wake is never lost
            handle.wake.clear()
            current = await self._db(job_store.get_job, job.id)
            if current is None or current.status != JobStatus.PROCESSING:
                return

            if current.paused:
                await self._wait_for_wake(handle)
                continue

            account = await self._db(job_store.claim_next_account, job.id)
            if account is None:
                # the claim also refuses while paused; only a drained queue ends the worker
                current = await self._db(job_store.get_job, job.id)
                if current is not None and current.status == JobStatus.PROCESSING and current.paused:
                    continue
                return

            await self._process_account(job, account, opts)
            stats.finished += 1

            if delay:
                await asyncio.sleep(delay)

    async def _wait_for_wake(self, handle: JobHandle) -> None:
        try:
            await asyncio.wait_for(handle.wake.wait(), timeout=self.settings.PAUSE_POLL_SECONDS)
        except asyncio.TimeoutError:
            pass

    async def _process_account(
        self,
        job: ProcessingJob,
        account: Account,
        opts: ProcessingOptions,
    ) -> None:
        log_extra = {"job_id": job.id, "account_id": account.id}
        company = CompanyIdentity(
            company_name=account.company_name,
            domain=account.domain,
            industry=account.industry,
        )
        perspectives = perspectives_for(opts.research_type)

        try:
            if job.job_type == JobType.CATEGORIZATION:
                perspectives = tuple(p for p in perspectives if has_research(account, p))
                if not perspectives:
                    raise CollaboratorError("No completed research available to categorize")
            else:
                for perspective in perspectives:
                    await self._research_perspective(job, account, company, perspective, opts)

            await self._db(
                job_store.append_event,
                job.id,
                EventType.CATEGORIZING,
                f"Categorizing {account.company_name}",
                account=account,
            )
            researched = await self._db(job_store.get_account, account.id)
            for perspective in perspectives:
                result = await self._call_collaborator(
                    self.categorizer.categorize(researched, perspective),
                    f"{perspective.title} categorization",
                )
                await self._db(job_store.save_categorization, account.id, perspective, result)
                logger.info(
                    "%s categorization for %s: tier %s, priority %s",
                    perspective.title,
                    account.company_name,
                    result.tier,
                    result.priority_score,
                    extra={**log_extra, "perspective": perspective.name},
                )
        except Exception as e:
            raw_error = str(e) or type(e).__name__
            logger.warning(
                "Failed to process %s: %s",
                account.company_name,
                raw_error,
                extra=log_extra,
            )
            await self._db(job_store.fail_account, job.id, account, raw_error)
            return

        await self._db(job_store.complete_account, job.id, account)
        logger.info("Completed %s", account.company_name, extra=log_extra)

    async def _research_perspective(self, job, account, company, perspective, opts) -> None:
        sections: Dict[str, str] = {}
        for index, section in enumerate(perspective.sections, start=1):
            await self._db(
                job_store.append_event,
                job.id,
                EventType.RESEARCH_STEP,
                f"{perspective.title}: {section.label}",
                account=account,
                step_index=index,
                total_steps=perspective.total_steps,
            )
            sections[section.key] = await self._call_collaborator(
                self.research.research(
                    company,
                    perspective,
                    section.key,
                    context=dict(sections),
                    model=opts.model,
                ),
                f"{perspective.title} research ({section.label})",
            )
        await self._db(job_store.save_research, account.id, perspective, sections, opts.model)
