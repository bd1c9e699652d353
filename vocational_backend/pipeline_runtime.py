from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger("vocational.pipeline")


@dataclass
class PipelineStep:
    """Named step of a chat turn; ``skip_if`` lets a mode bypass it."""
    name: str
    fn: Callable[[object], None]
    skip_if: Optional[Callable[[object], bool]] = None


class PipelineRunner:
    """Run steps in order against one mutable turn context."""

    def __init__(self, steps: List[PipelineStep]) -> None:
        self._steps = steps

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    def run(self, context: object) -> None:
        """Purpose: Execute steps in order, honoring skip rules.
        Inputs/Outputs: Input is a mutable context object; no return value.
        Side Effects / State: Step functions mutate the context; each step's
            duration is logged at DEBUG.
        Failure Modes: The first exception stops the run and propagates, so
            later steps (including persistence) never execute.
        Testing Notes: A raising step must prevent every later step.
        """
        session_key = getattr(context, "session_key", None)
        for step in self._steps:
            if step.skip_if and step.skip_if(context):
                logger.debug("session=%s step=%s skipped", session_key, step.name)
                continue
            started = time.perf_counter()
            step.fn(context)
            logger.debug(
                "session=%s step=%s elapsed_ms=%.1f",
                session_key,
                step.name,
                (time.perf_counter() - started) * 1000,
            )
