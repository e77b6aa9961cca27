"""DAG step scheduler for the steps of an execution plan.

Steps declare dependencies on other steps via ``depends_on``. The scheduler
determines which steps are ready (every dependency settled) and tracks
their progress. A dependency is settled once it is done, skipped or
degraded; a failed or cancelled dependency blocks its dependents forever.
"""

from __future__ import annotations

from graphlib import CycleError, TopologicalSorter
from typing import Iterable

from handoff.workflow.models import ExecutionStep


class CyclicDependencyError(Exception):
    """Raised when step dependencies form a cycle."""


class Scheduler:
    """DAG scheduler that tracks step dependencies and readiness.

    Usage:
        scheduler = Scheduler(plan.steps)
        while not scheduler.is_done():
            for step in scheduler.get_ready_steps():
                scheduler.mark_in_progress(step.step_id)
            # ... await results ...
            scheduler.mark_complete(step_id)  # or mark_failed / mark_skipped / mark_degraded
    """

    def __init__(self, steps: Iterable[ExecutionStep]) -> None:
        self._steps = {s.step_id: s for s in steps}
        self._completed: set[str] = set()
        self._skipped: set[str] = set()
        self._degraded: set[str] = set()
        self._failed: set[str] = set()
        self._in_progress: set[str] = set()
        self._validate_no_cycles()

    def _validate_no_cycles(self) -> None:
        graph = {
            sid: {dep for dep in step.depends_on if dep in self._steps}
            for sid, step in self._steps.items()
        }
        try:
            TopologicalSorter(graph).prepare()
        except CycleError as e:
            cycle = e.args[1]
            raise CyclicDependencyError(
                f"Cycle detected involving steps: {' -> '.join(cycle)}"
            ) from None

    def _settled(self) -> set[str]:
        return self._completed | self._skipped | self._degraded

    def _finished(self) -> set[str]:
        return self._settled() | self._failed

    def get_ready_steps(self) -> list[ExecutionStep]:
        """Return steps whose dependencies are all settled and that haven't started."""
        settled = self._settled()
        finished = self._finished()
        ready = []
        for sid, step in self._steps.items():
            if sid in finished or sid in self._in_progress:
                continue
            if all(dep in settled for dep in step.depends_on if dep in self._steps):
                ready.append(step)
        return ready

    def _finish(self, step_id: str, bucket: set[str]) -> None:
        if step_id not in self._steps:
            raise KeyError(f"Unknown step: {step_id}")
        self._in_progress.discard(step_id)
        bucket.add(step_id)

    def mark_in_progress(self, step_id: str) -> None:
        if step_id not in self._steps:
            raise KeyError(f"Unknown step: {step_id}")
        self._in_progress.add(step_id)

    def mark_complete(self, step_id: str) -> None:
        """Mark a step as done, unlocking dependents."""
        self._finish(step_id, self._completed)

    def mark_skipped(self, step_id: str) -> None:
        """Mark a step as skipped; dependents still unlock."""
        self._finish(step_id, self._skipped)

    def mark_degraded(self, step_id: str) -> None:
        """Mark a non-critical step that gave up; dependents still unlock."""
        self._finish(step_id, self._degraded)

    def mark_failed(self, step_id: str) -> None:
        """Mark a step as failed. Dependents will never become ready."""
        self._finish(step_id, self._failed)

    def is_done(self) -> bool:
        """True when no more progress can be made.

        This is when every step is finished, OR when the only remaining
        steps have unmet dependencies (due to upstream failures).
        """
        if len(self._finished()) == len(self._steps):
            return True
        return not self.get_ready_steps() and not self._in_progress

    def has_failures(self) -> bool:
        """True if any step has failed or is blocked behind a failure."""
        return bool(self._failed) or bool(self.blocked_ids)

    @property
    def blocked_ids(self) -> set[str]:
        """Unstarted steps that can never run because an upstream step failed."""
        blocked: set[str] = set()
        changed = True
        while changed:
            changed = False
            for sid, step in self._steps.items():
                if sid in blocked or sid in self._finished() or sid in self._in_progress:
                    continue
                if any(dep in self._failed or dep in blocked for dep in step.depends_on):
                    blocked.add(sid)
                    changed = True
        return blocked

    @property
    def completed_ids(self) -> set[str]:
        return set(self._completed)

    @property
    def skipped_ids(self) -> set[str]:
        return set(self._skipped)

    @property
    def degraded_ids(self) -> set[str]:
        return set(self._degraded)

    @property
    def failed_ids(self) -> set[str]:
        return set(self._failed)

    @property
    def in_progress_ids(self) -> set[str]:
        return set(self._in_progress)
