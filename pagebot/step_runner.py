from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, TypeVar

ContextT = TypeVar("ContextT")


@dataclass
class PipelineStep(Generic[ContextT]):
    """Named turn step with an optional skip guard."""
    name: str
    fn: Callable[[ContextT], None]
    skip_if: Optional[Callable[[ContextT], bool]] = None
    always_run: bool = False


class StepRunner(Generic[ContextT]):
    """Run turn steps in order, honouring skip guards and always-run steps."""

    def __init__(self, steps: List[PipelineStep[ContextT]]) -> None:
        self._steps = steps

    def run(self, context: ContextT, on_step: Optional[Callable[[str], None]] = None) -> None:
        """Purpose: Execute steps in order with skip/always-run rules.
        Inputs/Outputs: Inputs are a mutable context and an optional callback receiving
            each executed step name; no return value.
        Side Effects / State: Step functions mutate the context.
        Dependencies: PipelineStep.fn and PipelineStep.skip_if.
        Failure Modes: Exceptions in step functions propagate to the caller and stop
            the remaining steps.
        If Removed: The workflow turn cannot run.
        Testing Notes: Verify skip_if and always_run with simple steps.
        """
        # Run each step unless its guard skips it.
        for step in self._steps:
            if not step.always_run and step.skip_if and step.skip_if(context):
                continue
            step.fn(context)
            if on_step is not None:
                on_step(step.name)
