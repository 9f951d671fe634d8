"""Roadmap state machine for the job order lifecycle.

This module owns the single transition table for roadmap stages. Consumers
ask it to open, close, re-open or cancel stages instead of comparing stage
strings themselves. It also infers a best-effort display timeline for
orders whose stored steps are missing start/end timestamps.

Stage order:
    New Request -> Inspection -> Service Operation -> Quality Check -> Ready
    -> Completed, with Quality Check -> Service Operation for rework and
    Cancelled reachable from every non-terminal stage.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from autoservice.core.exceptions import ValidationError
from autoservice.core.logging import get_logger
from autoservice.schemas.job_orders import RoadmapStep
from autoservice.services.job_orders.enums import RoadmapStage, StepStatus, WorkLabel

logger = get_logger(__name__)

CANONICAL_STAGES: tuple[RoadmapStage, ...] = (
    RoadmapStage.NEW_REQUEST,
    RoadmapStage.INSPECTION,
    RoadmapStage.SERVICE_OPERATION,
    RoadmapStage.QUALITY_CHECK,
    RoadmapStage.READY,
)

_TRANSITIONS: Dict[RoadmapStage, frozenset[RoadmapStage]] = {
    RoadmapStage.NEW_REQUEST: frozenset({RoadmapStage.INSPECTION, RoadmapStage.CANCELLED}),
    RoadmapStage.INSPECTION: frozenset(
        {RoadmapStage.SERVICE_OPERATION, RoadmapStage.CANCELLED}
    ),
    RoadmapStage.SERVICE_OPERATION: frozenset(
        {RoadmapStage.QUALITY_CHECK, RoadmapStage.CANCELLED}
    ),
    RoadmapStage.QUALITY_CHECK: frozenset(
        {RoadmapStage.READY, RoadmapStage.SERVICE_OPERATION, RoadmapStage.CANCELLED}
    ),
    RoadmapStage.READY: frozenset({RoadmapStage.COMPLETED, RoadmapStage.CANCELLED}),
    RoadmapStage.COMPLETED: frozenset(),
    RoadmapStage.CANCELLED: frozenset(),
}

_STAGE_WORK_LABEL: Dict[RoadmapStage, WorkLabel] = {
    RoadmapStage.NEW_REQUEST: WorkLabel.NEW_REQUEST,
    RoadmapStage.INSPECTION: WorkLabel.INSPECTION,
    RoadmapStage.SERVICE_OPERATION: WorkLabel.IN_PROGRESS,
    RoadmapStage.QUALITY_CHECK: WorkLabel.QUALITY_CHECK,
    RoadmapStage.READY: WorkLabel.READY,
    RoadmapStage.COMPLETED: WorkLabel.COMPLETED,
    RoadmapStage.CANCELLED: WorkLabel.CANCELLED,
}

_WORK_LABEL_STAGE: Dict[str, RoadmapStage] = {
    "draft": RoadmapStage.NEW_REQUEST,
    "new request": RoadmapStage.NEW_REQUEST,
    "inspection": RoadmapStage.INSPECTION,
    "inprogress": RoadmapStage.SERVICE_OPERATION,
    "in progress": RoadmapStage.SERVICE_OPERATION,
    "service operation": RoadmapStage.SERVICE_OPERATION,
    "quality check": RoadmapStage.QUALITY_CHECK,
    "ready": RoadmapStage.READY,
    "completed": RoadmapStage.COMPLETED,
    "cancelled": RoadmapStage.CANCELLED,
    "canceled": RoadmapStage.CANCELLED,
}


class StateTransitionError(ValidationError):
    """Raised when an invalid roadmap transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: RoadmapStage,
        target_state: RoadmapStage,
        **context: Any,
    ):
        super().__init__(
            message,
            current_state=current_state.value,
            target_state=target_state.value,
            **context,
        )
        self.current_state = current_state
        self.target_state = target_state


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def stage_for_work_status(work_status: Optional[str]) -> Optional[RoadmapStage]:
    """Map a work status display value to its roadmap stage."""
    key = " ".join((work_status or "").split()).lower()
    return _WORK_LABEL_STAGE.get(key)


def work_label_for_stage(stage: RoadmapStage) -> str:
    """Work status display value that corresponds to a stage."""
    return _STAGE_WORK_LABEL[stage].value


def _stage_of(step: RoadmapStep) -> Optional[RoadmapStage]:
    return RoadmapStage.from_string(step.step)


def _has_actor(step: RoadmapStep) -> bool:
    return bool(step.action_by) and step.action_by.strip().lower() != "not assigned"


class RoadmapStateMachine:
    """State machine for roadmap stage transitions.

    Transitions operate on copies of the roadmap and return the updated
    list; the caller persists it. Set timestamps are never overwritten.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        """Initialize state machine.

        Args:
            clock: Source of the current time (UTC)
        """
        self._clock = clock
        self._transitions = _TRANSITIONS
        self._side_effects: Dict[
            RoadmapStage, Callable[[list[RoadmapStep], str, datetime], None]
        ] = {
            RoadmapStage.COMPLETED: self._effect_terminal_completed,
            RoadmapStage.CANCELLED: self._effect_terminal_cancelled,
        }

    # ------------------------------------------------------------------
    # Table queries
    # ------------------------------------------------------------------

    def allowed_transitions(self, stage: RoadmapStage) -> frozenset[RoadmapStage]:
        """Stages reachable from ``stage``."""
        return self._transitions[stage]

    def initial_roadmap(self, actor: str, now: Optional[datetime] = None) -> list[RoadmapStep]:
        """Build the roadmap of a freshly created order.

        New Request is active and attributed to the creating actor; every
        later stage is upcoming.
        """
        now = now or self._clock()
        roadmap = [RoadmapStep(step=stage.value) for stage in CANONICAL_STAGES]
        first = roadmap[0]
        first.step_status = StepStatus.ACTIVE
        first.start_timestamp = now
        first.action_by = actor
        return roadmap

    def current_stage(
        self, roadmap: list[RoadmapStep], work_status: Optional[str] = None
    ) -> RoadmapStage:
        """Resolve the order's current stage.

        Terminal steps win, then the last active step, then the stage
        implied by the work status, then New Request.
        """
        active: Optional[RoadmapStage] = None
        for step in roadmap:
            stage = _stage_of(step)
            if stage is None:
                continue
            if stage.is_terminal() and step.step_status in {
                StepStatus.COMPLETED,
                StepStatus.CANCELLED,
                StepStatus.ACTIVE,
            }:
                return stage
            if step.step_status == StepStatus.ACTIVE:
                active = stage
        if active is not None:
            return active
        return stage_for_work_status(work_status) or RoadmapStage.NEW_REQUEST

    def validate_transition(
        self, current: RoadmapStage, target: RoadmapStage, **context: Any
    ) -> None:
        """Validate a transition against the table.

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        if target not in self._transitions[current]:
            raise StateTransitionError(
                f"Invalid transition from {current.value} to {target.value}",
                current_state=current,
                target_state=target,
                allowed_transitions=sorted(s.value for s in self._transitions[current]),
                **context,
            )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def apply_transition(
        self,
        roadmap: list[RoadmapStep],
        target: RoadmapStage,
        actor: str,
        work_status: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[RoadmapStep]:
        """Move the roadmap to ``target``.

        Closes the current step (end timestamp, actor), opens the target
        step (start kept if already set) and keeps exactly one step active.

        Args:
            roadmap: Current roadmap steps
            target: Stage to enter
            actor: Identity performing the transition
            work_status: Order work status, used when no step is active
            now: Transition time

        Returns:
            New roadmap list

        Raises:
            StateTransitionError: If the transition is not in the table
        """
        now = now or self._clock()
        current = self.current_stage(roadmap, work_status)
        self.validate_transition(current, target)

        steps = self._ensure_canonical(roadmap)
        index: Dict[RoadmapStage, int] = {}
        for i, step in enumerate(steps):
            stage = _stage_of(step)
            if stage is not None and stage not in index:
                index[stage] = i

        current_step = steps[index[current]] if current in index else None
        if current_step is not None:
            if target == RoadmapStage.CANCELLED:
                current_step.step_status = StepStatus.CANCELLED
            else:
                current_step.step_status = StepStatus.COMPLETED
            if current_step.end_timestamp is None:
                current_step.end_timestamp = now
            if current_step.start_timestamp is None:
                current_step.start_timestamp = now
            current_step.action_by = actor

        if target in self._side_effects:
            self._side_effects[target](steps, actor, now)
        else:
            target_position = CANONICAL_STAGES.index(target)
            for position, stage in enumerate(CANONICAL_STAGES):
                step = steps[index[stage]]
                if position == target_position:
                    step.step_status = StepStatus.ACTIVE
                    if step.start_timestamp is None:
                        step.start_timestamp = now
                    step.end_timestamp = None
                    if not _has_actor(step):
                        step.action_by = actor
                elif step.step_status == StepStatus.ACTIVE:
                    if position < target_position:
                        step.step_status = StepStatus.COMPLETED
                        if step.end_timestamp is None:
                            step.end_timestamp = now
                    else:
                        step.step_status = StepStatus.UPCOMING

        logger.info(
            "Roadmap transition applied",
            transition=f"{current.value}->{target.value}",
            actor=actor,
        )
        return steps

    def advance(
        self,
        roadmap: list[RoadmapStep],
        target: RoadmapStage,
        actor: str,
        work_status: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[list[RoadmapStep], str]:
        """Apply a transition and return the matching work status label."""
        steps = self.apply_transition(roadmap, target, actor, work_status, now)
        return steps, work_label_for_stage(target)

    def quality_check_decision(
        self,
        roadmap: list[RoadmapStep],
        approved: bool,
        actor: str,
        work_status: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[list[RoadmapStep], str]:
        """Close quality check: approve opens Ready, reject re-opens service work.

        Raises:
            StateTransitionError: If the order is not in quality check
        """
        current = self.current_stage(roadmap, work_status)
        if current != RoadmapStage.QUALITY_CHECK:
            raise StateTransitionError(
                "Quality check decision requires the order to be in Quality Check",
                current_state=current,
                target_state=RoadmapStage.READY if approved else RoadmapStage.SERVICE_OPERATION,
            )
        target = RoadmapStage.READY if approved else RoadmapStage.SERVICE_OPERATION
        return self.advance(roadmap, target, actor, work_status, now)

    def cancel(
        self,
        roadmap: list[RoadmapStep],
        actor: str,
        work_status: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[list[RoadmapStep], str]:
        """Cancel from any non-terminal stage, bypassing the normal order."""
        return self.advance(roadmap, RoadmapStage.CANCELLED, actor, work_status, now)

    # ------------------------------------------------------------------
    # Timeline inference
    # ------------------------------------------------------------------

    def infer_timeline(
        self,
        roadmap: list[RoadmapStep],
        work_status: Optional[str],
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ) -> list[RoadmapStep]:
        """Fill missing start/end timestamps for display.

        A reached step with no start takes, in order: the previous step's
        completion (the order's creation time for the first step), the first
        later step's start, then the order's last update. A passed step with
        no end takes the next step's start. Existing values are never
        replaced.

        Returns:
            Copy of the roadmap with inferred timestamps
        """
        steps = self._ensure_canonical(roadmap)
        canonical = steps[: len(CANONICAL_STAGES)]
        progressed = max(
            self._progress_index(self.current_stage(roadmap, work_status), canonical),
            self._progress_index(stage_for_work_status(work_status), canonical),
        )

        def reached(i: int) -> bool:
            return i <= progressed or canonical[i].step_status != StepStatus.UPCOMING

        def passed(i: int) -> bool:
            return i < progressed or canonical[i].step_status in {
                StepStatus.COMPLETED,
                StepStatus.CANCELLED,
            }

        for i, step in enumerate(canonical[:-1]):
            nxt = canonical[i + 1]
            if step.end_timestamp is None and passed(i) and nxt.start_timestamp is not None:
                step.end_timestamp = nxt.start_timestamp

        for i, step in enumerate(canonical):
            if step.start_timestamp is None and reached(i):
                previous_end = canonical[i - 1].end_timestamp if i > 0 else created_at
                later_start = next(
                    (s.start_timestamp for s in canonical[i + 1:] if s.start_timestamp),
                    None,
                )
                step.start_timestamp = previous_end or later_start or updated_at
            if i > 0:
                prev = canonical[i - 1]
                if prev.end_timestamp is None and passed(i - 1) and step.start_timestamp:
                    prev.end_timestamp = step.start_timestamp

        return steps

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_canonical(self, roadmap: list[RoadmapStep]) -> list[RoadmapStep]:
        """Deep-copy the roadmap into canonical order, adding missing stages."""
        by_stage: Dict[RoadmapStage, RoadmapStep] = {}
        extras: list[RoadmapStep] = []
        for step in roadmap:
            stage = _stage_of(step)
            copy = step.model_copy(deep=True)
            if stage is None or stage in by_stage:
                extras.append(copy)
                continue
            copy.step = stage.value
            by_stage[stage] = copy

        steps = [
            by_stage.get(stage) or RoadmapStep(step=stage.value)
            for stage in CANONICAL_STAGES
        ]
        for stage in (RoadmapStage.COMPLETED, RoadmapStage.CANCELLED):
            if stage in by_stage:
                steps.append(by_stage[stage])
        return steps + extras

    def _progress_index(
        self, stage: Optional[RoadmapStage], canonical: list[RoadmapStep]
    ) -> int:
        """Index of the furthest canonical stage an order has reached."""
        if stage is None:
            return 0
        if stage == RoadmapStage.COMPLETED:
            return len(canonical)
        if stage == RoadmapStage.CANCELLED:
            return max(
                (
                    i
                    for i, step in enumerate(canonical)
                    if step.step_status != StepStatus.UPCOMING
                ),
                default=0,
            )
        return CANONICAL_STAGES.index(stage)

    def _terminal_step(
        self, steps: list[RoadmapStep], stage: RoadmapStage
    ) -> RoadmapStep:
        for step in steps:
            if _stage_of(step) == stage:
                return step
        step = RoadmapStep(step=stage.value)
        steps.append(step)
        return step

    def _effect_terminal_completed(
        self, steps: list[RoadmapStep], actor: str, now: datetime
    ) -> None:
        for step in steps:
            if step.step_status == StepStatus.ACTIVE:
                step.step_status = StepStatus.COMPLETED
                if step.end_timestamp is None:
                    step.end_timestamp = now
        terminal = self._terminal_step(steps, RoadmapStage.COMPLETED)
        terminal.step_status = StepStatus.COMPLETED
        terminal.start_timestamp = terminal.start_timestamp or now
        terminal.end_timestamp = terminal.end_timestamp or now
        terminal.action_by = actor

    def _effect_terminal_cancelled(
        self, steps: list[RoadmapStep], actor: str, now: datetime
    ) -> None:
        for step in steps:
            if step.step_status == StepStatus.ACTIVE:
                step.step_status = StepStatus.CANCELLED
                if step.end_timestamp is None:
                    step.end_timestamp = now
        terminal = self._terminal_step(steps, RoadmapStage.CANCELLED)
        terminal.step_status = StepStatus.CANCELLED
        terminal.start_timestamp = terminal.start_timestamp or now
        terminal.end_timestamp = terminal.end_timestamp or now
        terminal.action_by = actor


def get_roadmap_state_machine() -> RoadmapStateMachine:
    """Factory function to create a RoadmapStateMachine instance."""
    return RoadmapStateMachine()
