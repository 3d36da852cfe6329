"""
Job Scheduler: paces bulk contact/email jobs, one per (platform, account).

State machine per job key:

    Processing ──(items exhausted)──────▶ Completed
    Processing ──(account lookup fails)─▶ Failed
    Processing ──pause()──▶ Paused ──resume()──▶ Processing
    Processing / Paused ──stop()──▶ Stopped

Terminal states are only left by a fresh start(), which replaces the record.

Pacing: the first item dispatches immediately; after each dispatch the
next one is armed with loop.call_later(delay_seconds) plus a cosmetic
countdown ticker. Both handles are always cancelled together. The next
dispatch is only armed once the current one has finished, so a key never
has two dispatches running. Verification tasks are spawned and forgotten.

All public methods are plain (non-async) and must be called from inside
the running event loop; none of them yields, so they never interleave
with a dispatch's bookkeeping.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple

import config
from jobs.models import JobRecord, JobStatus, LiveStatus, ResultRecord, job_key
from jobs.pipeline import ContactEmailPipeline
from jobs.verification import DeliveryVerifier
from utils.elk_logging import log_item_event, log_job_event
from zoho_client import get_platform

logger = logging.getLogger("zohojobs.scheduler")

JobFinishedHook = Callable[[str, Dict[str, Any]], Awaitable[Any]]


class JobScheduler:
    """
    Owns the job table and every timer/task that drives it.

    Lifecycle:
        async with JobScheduler(Accounts, ZohoTokenProvider(), ZohoClient()) as scheduler:
            scheduler.start("1700000000000", "crm", emails, 5, form_data)
            await scheduler.wait_until_settled("1700000000000", "crm")
    """

    def __init__(
        self,
        accounts,
        tokens,
        client,
        tick_interval: float = None,
        default_check_delay: float = None,
        on_job_finished: Optional[JobFinishedHook] = None,
    ):
        self.accounts = accounts
        self.pipeline = ContactEmailPipeline(client, tokens)
        self.verifier = DeliveryVerifier(accounts, tokens, client)
        self.tick_interval = tick_interval or config.COUNTDOWN_TICK_SECONDS
        self.default_check_delay = (
            config.DEFAULT_CHECK_DELAY_SECONDS if default_check_delay is None else default_check_delay
        )
        self.on_job_finished = on_job_finished

        self._jobs: Dict[str, JobRecord] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._tickers: Dict[str, asyncio.TimerHandle] = {}
        self._dispatch_tasks: Set[asyncio.Task] = set()
        self._verifications: Set[asyncio.Task] = set()
        self._hook_tasks: Set[asyncio.Task] = set()
        self._closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    # ── Public operations ────────────────────────────────────────────

    def start(
        self,
        account_id,
        platform,
        items: Iterable[str],
        delay_seconds: float,
        form_data: Dict[str, Any] = None,
    ) -> bool:
        """
        Seed a fresh job and dispatch its first item immediately.

        Returns False (and changes nothing) if the key is already Processing.
        Any other record under the key is replaced, results included.
        """
        if self._closed:
            raise RuntimeError("JobScheduler is closed")

        platform = get_platform(platform)
        account_id = str(account_id)
        key = job_key(platform.name, account_id)

        existing = self._jobs.get(key)
        if existing is not None and existing.status is JobStatus.PROCESSING:
            logger.info("job_start_rejected", extra={"job_key": key, "reason": "already_processing"})
            return False

        self._clear_timers(key)
        job = JobRecord(
            account_id=account_id,
            platform=platform,
            items=tuple(items),
            delay_seconds=delay_seconds,
            form_data=dict(form_data or {}),
        )
        self._jobs[key] = job
        log_job_event("job_started", key, total=job.total, delay_seconds=delay_seconds)

        self._spawn_dispatch(key, job)
        return True

    def pause(self, account_id, platform="crm") -> bool:
        """Stop scheduling further items. An in-flight dispatch still lands."""
        key, job = self._lookup(account_id, platform)
        if job is None or job.status is not JobStatus.PROCESSING:
            return False

        self._clear_timers(key)
        job.set_status(JobStatus.PAUSED)
        log_job_event("job_paused", key, cursor=job.cursor, countdown=job.countdown)
        return True

    def resume(self, account_id, platform="crm") -> bool:
        """
        Continue from the cursor. The wait before the next item restarts
        from the full delay_seconds, not from the countdown left at pause.
        """
        key, job = self._lookup(account_id, platform)
        if job is None or job.status is not JobStatus.PAUSED:
            return False

        job.set_status(JobStatus.PROCESSING)
        log_job_event("job_resumed", key, cursor=job.cursor)

        # An in-flight dispatch re-arms the loop itself when it finishes
        if not job.in_flight:
            self._schedule_next(key, job)
        return True

    def stop(self, account_id, platform="crm") -> bool:
        key, job = self._lookup(account_id, platform)
        if job is None or job.status.is_terminal:
            return False

        self._clear_timers(key)
        job.countdown = 0
        job.set_status(JobStatus.STOPPED)
        log_job_event("job_stopped", key, cursor=job.cursor, total=job.total)
        return True

    def reset(self, account_id, platform="crm") -> bool:
        """Forget a record that is not Processing."""
        key, job = self._lookup(account_id, platform)
        if job is None or job.status is JobStatus.PROCESSING:
            return False

        self._clear_timers(key)
        del self._jobs[key]
        log_job_event("job_reset", key)
        return True

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        return {key: job.snapshot() for key, job in self._jobs.items()}

    def get_job_status(self, account_id, platform="crm") -> Optional[Dict[str, Any]]:
        _, job = self._lookup(account_id, platform)
        return job.snapshot() if job else None

    async def wait_until_settled(self, account_id, platform="crm", poll_interval: float = 0.1) -> Optional[Dict[str, Any]]:
        """Poll until the job is terminal and nothing is in flight."""
        while True:
            _, job = self._lookup(account_id, platform)
            if job is None:
                return None
            if job.status.is_terminal and not job.in_flight:
                return job.snapshot()
            await asyncio.sleep(poll_interval)

    async def drain(self) -> None:
        """Wait for outstanding verification and job-finished hook tasks."""
        while self._verifications or self._hook_tasks:
            await asyncio.gather(*(self._verifications | self._hook_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel every timer and background task. Job records are kept."""
        self._closed = True
        for key in set(self._timers) | set(self._tickers):
            self._clear_timers(key)

        tasks = list(self._dispatch_tasks | self._verifications | self._hook_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("scheduler_closed", extra={"jobs": len(self._jobs), "cancelled_tasks": len(tasks)})

    # ── Pacing ───────────────────────────────────────────────────────

    def _lookup(self, account_id, platform) -> Tuple[str, Optional[JobRecord]]:
        key = job_key(get_platform(platform).name, account_id)
        return key, self._jobs.get(key)

    def _is_current(self, key: str, job: JobRecord) -> bool:
        return self._jobs.get(key) is job

    def _clear_timers(self, key: str) -> None:
        timer = self._timers.pop(key, None)
        if timer:
            timer.cancel()
        ticker = self._tickers.pop(key, None)
        if ticker:
            ticker.cancel()

    def _schedule_next(self, key: str, job: JobRecord) -> None:
        if job.exhausted:
            self._finish(key, job)
            return

        loop = asyncio.get_running_loop()
        self._clear_timers(key)
        job.countdown = job.delay_seconds
        job.touch()
        self._tickers[key] = loop.call_later(self.tick_interval, self._tick, key, job)
        self._timers[key] = loop.call_later(job.delay_seconds, self._fire, key, job)

    def _tick(self, key: str, job: JobRecord) -> None:
        self._tickers.pop(key, None)
        if not self._is_current(key, job) or job.status is not JobStatus.PROCESSING:
            return
        job.countdown = max(0, round(job.countdown - self.tick_interval, 3))
        if job.countdown > 0:
            loop = asyncio.get_running_loop()
            self._tickers[key] = loop.call_later(self.tick_interval, self._tick, key, job)

    def _fire(self, key: str, job: JobRecord) -> None:
        self._clear_timers(key)
        if not self._is_current(key, job) or job.status is not JobStatus.PROCESSING:
            return
        job.countdown = 0
        self._spawn_dispatch(key, job)

    def _advance(self, key: str, job: JobRecord) -> None:
        """After a dispatch: re-arm, complete, or do nothing if paused/stopped/replaced."""
        if self._closed or not self._is_current(key, job):
            return
        if job.status is not JobStatus.PROCESSING:
            return
        self._schedule_next(key, job)

    def _finish(self, key: str, job: JobRecord) -> None:
        self._clear_timers(key)
        job.countdown = 0
        job.set_status(JobStatus.COMPLETED)
        logger.info(f"Job {key} completed ({job.cursor}/{job.total}).")
        log_job_event("job_completed", key, total=job.total)
        self._notify_finished(key, job)

    def _fail(self, key: str, job: JobRecord, error: str) -> None:
        # A paused or stopped job keeps its state; resume retries the same item
        if job.status is not JobStatus.PROCESSING:
            logger.warning(f"job_error_while_{job.status.value.lower()}: {key} {error}")
            return
        if self._is_current(key, job):
            self._clear_timers(key)
        job.countdown = 0
        job.set_status(JobStatus.FAILED, error=error)
        logger.error(f"Critical error in job {key}: {error}")
        log_job_event("job_failed", key, cursor=job.cursor, error=error)
        self._notify_finished(key, job)

    def _notify_finished(self, key: str, job: JobRecord) -> None:
        if not self.on_job_finished:
            return

        async def run_hook(snapshot):
            try:
                await self.on_job_finished(key, snapshot)
            except Exception as e:
                logger.error(f"job_finished_hook_failed: {key} error={e}")

        task = asyncio.get_running_loop().create_task(run_hook(job.snapshot()))
        self._hook_tasks.add(task)
        task.add_done_callback(self._hook_tasks.discard)

    # ── Dispatch ─────────────────────────────────────────────────────

    def _spawn_dispatch(self, key: str, job: JobRecord) -> None:
        job.in_flight = True
        task = asyncio.get_running_loop().create_task(self._dispatch(key, job), name=f"dispatch:{key}")
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

    async def _dispatch(self, key: str, job: JobRecord) -> None:
        try:
            if job.status is JobStatus.PROCESSING and not job.exhausted:
                await self._process_current(key, job)
        except Exception as e:
            logger.error(f"dispatch_error: {key} error={e}", exc_info=True)
            self._fail(key, job, str(e))
        finally:
            job.in_flight = False
        self._advance(key, job)

    async def _process_current(self, key: str, job: JobRecord) -> None:
        item = job.items[job.cursor]

        try:
            account = await asyncio.to_thread(self.accounts.get_by_id, job.account_id)
        except Exception as e:
            self._fail(key, job, f"Account lookup failed for {job.account_id}: {e}")
            return
        if account is None:
            self._fail(key, job, f"Account {job.account_id} not found.")
            return

        result = await self.pipeline.process(account, job.platform, item, job.form_data)

        job.results.append(result)
        job.cursor += 1
        job.touch()
        log_item_event(
            "item_processed",
            key,
            item,
            extra={
                "create_outcome": result.create_outcome.value,
                "send_outcome": result.send_outcome.value,
                "cursor": job.cursor,
                "total": job.total,
            },
        )

        if result.live_status == LiveStatus.PENDING:
            self._spawn_verification(key, job, result)

    def _check_delay(self, key: str, job: JobRecord) -> float:
        wait = job.form_data.get("check_delay")
        if wait in (None, ""):
            return self.default_check_delay
        try:
            wait_seconds = float(wait)
        except (TypeError, ValueError):
            logger.warning(f"invalid_check_delay: {key} value={wait!r}, using {self.default_check_delay}s")
            return self.default_check_delay
        return max(wait_seconds, 0.0)

    def _spawn_verification(self, key: str, job: JobRecord, result: ResultRecord) -> None:
        wait_seconds = self._check_delay(key, job)
        task = asyncio.get_running_loop().create_task(
            self.verifier.verify(result, job.account_id, job.platform, wait_seconds, key),
            name=f"verify:{key}:{result.item}",
        )
        self._verifications.add(task)
        task.add_done_callback(self._verifications.discard)
