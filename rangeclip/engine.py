"""Export engine — runs a batch of ExportJobs through ffmpeg off the UI thread."""

import logging
import os
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from rangeclip import crop as crop_model
from rangeclip import ffutil
from rangeclip.config import ExportConfig
from rangeclip.errors import (
    AlreadyRunningError,
    InvalidCropError,
    TranscodeCancelledError,
    TranscodeFailedError,
    UnreadableError,
)
from rangeclip.jobs import claim_output, temp_sibling
from rangeclip.models import (
    BatchResult,
    EngineState,
    ExportJob,
    FailureReason,
    JobOutcome,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobStarted:
    job_id: int
    output_stem: str


@dataclass(frozen=True)
class JobProgress:
    job_id: int
    fraction: float


@dataclass(frozen=True)
class JobFinished:
    outcome: JobOutcome


@dataclass(frozen=True)
class BatchFinished:
    result: BatchResult


def write_sidecar(path: Path, label: str) -> Path:
    """Write *label* as the whole UTF-8 content of *path*, replacing it."""
    tmp = temp_sibling(path)
    try:
        tmp.write_text(label, encoding="utf-8")
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)
    return path


class _Batch:
    """Per-submit state. The worker only ever touches its own batch."""

    def __init__(self) -> None:
        self.cancel = threading.Event()
        self.done = threading.Event()
        self.reserved: set[Path] = set()
        self.result: BatchResult | None = None


class ExportEngine:
    """Runs export batches on a worker thread and reports back through events.

    The interactive side calls ``submit`` and ``cancel`` and drains
    ``poll_events``; neither blocks on ffmpeg. Events are JobStarted,
    JobProgress, JobFinished and BatchFinished. ``on_event``, if given, is
    also called with each event, from the worker thread.
    """

    def __init__(
        self,
        config: ExportConfig | None = None,
        on_event: Callable[[object], None] | None = None,
    ) -> None:
        self.config = config or ExportConfig()
        self._on_event = on_event
        self._events: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._state = EngineState.IDLE
        self._batch: _Batch | None = None
        self._worker: threading.Thread | None = None

    @property
    def state(self) -> EngineState:
        with self._lock:
            return self._state

    @property
    def result(self) -> BatchResult | None:
        with self._lock:
            return self._batch.result if self._batch else None

    def submit(self, jobs: Iterable[ExportJob]) -> None:
        """Start exporting *jobs* in order. Returns immediately."""
        jobs = tuple(jobs)
        batch = _Batch()
        with self._lock:
            if self._state is EngineState.RUNNING:
                raise AlreadyRunningError("an export batch is already running")
            self._state = EngineState.RUNNING
            self._batch = batch

        logger.info("Submitting %d export job(s)", len(jobs))
        self._worker = threading.Thread(
            target=self._run_batch, args=(batch, jobs), name="rangeclip-export", daemon=True
        )
        self._worker.start()

    def cancel(self) -> bool:
        """Stop starting new jobs and kill the one in flight.

        Returns False when there is nothing to cancel.
        """
        with self._lock:
            if self._state is not EngineState.RUNNING:
                return False
            self._batch.cancel.set()
        logger.info("Export cancel requested")
        return True

    def wait(self, timeout: float | None = None) -> BatchResult | None:
        """Block until the most recently submitted batch finishes; None on timeout."""
        with self._lock:
            batch = self._batch
        if batch is None:
            return None
        if not batch.done.wait(timeout):
            return None
        return batch.result

    def poll_events(self) -> list[object]:
        """Drain pending events without blocking."""
        events: list[object] = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events

    def _notify(self, event: object) -> None:
        if self._on_event:
            try:
                self._on_event(event)
            except Exception:
                logger.exception("Export event callback failed")

    def _emit(self, event: object) -> None:
        self._events.put(event)
        self._notify(event)

    def _run_batch(self, batch: _Batch, jobs: tuple[ExportJob, ...]) -> None:
        outcomes: list[JobOutcome] = []
        try:
            if self.config.max_workers <= 1 or len(jobs) <= 1:
                outcomes = [self._guarded(batch, job) for job in jobs]
            else:
                with ThreadPoolExecutor(
                    max_workers=self.config.max_workers,
                    thread_name_prefix="rangeclip-job",
                ) as pool:
                    outcomes = list(pool.map(lambda job: self._guarded(batch, job), jobs))
        finally:
            result = BatchResult(state=self._final_state(batch, outcomes), outcomes=outcomes)
            logger.info(
                "Export batch finished: %s (%d ok, %d failed)",
                result.state.value,
                len(result.written),
                len(result.failures),
            )
            finished = BatchFinished(result)
            # BatchFinished precedes every event of the next batch.
            self._events.put(finished)
            with self._lock:
                batch.result = result
                self._state = result.state
                batch.done.set()
            self._notify(finished)

    @staticmethod
    def _final_state(batch: _Batch, outcomes: list[JobOutcome]) -> EngineState:
        if batch.cancel.is_set() and any(
            o.reason is FailureReason.CANCELLED for o in outcomes
        ):
            return EngineState.CANCELLED
        if all(o.success for o in outcomes):
            return EngineState.COMPLETED
        return EngineState.PARTIALLY_FAILED

    def _guarded(self, batch: _Batch, job: ExportJob) -> JobOutcome:
        if batch.cancel.is_set():
            outcome = JobOutcome.failed(
                job.job_id, FailureReason.CANCELLED, "not started: export cancelled"
            )
        else:
            self._emit(JobStarted(job.job_id, job.output_stem))
            try:
                outcome = self._execute(batch, job)
            except Exception as e:
                logger.exception("Unexpected error exporting job %d", job.job_id)
                outcome = JobOutcome.failed(job.job_id, FailureReason.IO_ERROR, str(e))
        if not outcome.success:
            logger.warning(
                "Job %d failed: %s %s", job.job_id, outcome.reason.value, outcome.detail
            )
        self._emit(JobFinished(outcome))
        return outcome

    def _execute(self, batch: _Batch, job: ExportJob) -> JobOutcome:
        if not job.video_path.is_file():
            return JobOutcome.failed(
                job.job_id, FailureReason.MISSING_SOURCE, f"source not found: {job.video_path}"
            )

        try:
            meta = ffutil.probe(job.video_path, still=job.still)
        except UnreadableError as e:
            return JobOutcome.failed(job.job_id, FailureReason.UNREADABLE, str(e))

        crop_px = None
        if job.crop is not None:
            try:
                crop_px = crop_model.to_pixels(
                    job.crop, meta.width, meta.height, even=self.config.even_crop
                )
            except InvalidCropError as e:
                return JobOutcome.failed(job.job_id, FailureReason.INVALID_CROP, str(e))

        try:
            job.output_folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return JobOutcome.failed(job.job_id, FailureReason.IO_ERROR, str(e))

        # Stills keep their own format; clips use the configured container.
        suffix = job.video_path.suffix.lower() if job.still else self.config.suffix
        with self._lock:
            final = claim_output(job.output_folder, job.output_stem, suffix, batch.reserved)
        tmp = temp_sibling(final)
        sidecar = final.with_suffix(".txt")

        cmd = ffutil.clip_command(
            job.video_path,
            start=job.start,
            duration=job.duration,
            output_path=tmp,
            crop=crop_px,
            video_codec=self.config.video_codec,
            preset=self.config.preset,
            output_fps=self.config.output_fps,
            still=job.still,
        )

        logger.info("Exporting job %d -> %s", job.job_id, final)
        try:
            ffutil.run_clip(
                cmd,
                tmp,
                duration=None if job.still else job.duration,
                cancel_event=batch.cancel,
                on_progress=lambda frac: self._emit(JobProgress(job.job_id, frac)),
            )
            os.replace(tmp, final)
        except TranscodeCancelledError as e:
            return JobOutcome.failed(job.job_id, FailureReason.CANCELLED, str(e))
        except TranscodeFailedError as e:
            detail = f"{e}: {e.stderr}" if e.stderr else str(e)
            return JobOutcome.failed(job.job_id, FailureReason.TRANSCODE_FAILED, detail)
        except OSError as e:
            return JobOutcome.failed(job.job_id, FailureReason.IO_ERROR, str(e))
        finally:
            tmp.unlink(missing_ok=True)

        try:
            write_sidecar(sidecar, job.label)
        except OSError as e:
            final.unlink(missing_ok=True)
            return JobOutcome.failed(
                job.job_id, FailureReason.IO_ERROR, f"could not write sidecar: {e}"
            )

        return JobOutcome.ok(job.job_id, final, sidecar)
