"""Ordered action/compensation runner.

The backend offers no transaction spanning "allocate number", "insert
invoice", "insert line items" and "link entries", so each step registers a
compensation that undoes it. When a step fails, the compensations of the
steps that already completed run in reverse order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from bulk_invoice.models import BulkInvoiceError

logger = logging.getLogger(__name__)

Action = Callable[[dict], Any]
Compensation = Callable[[dict], None]


@dataclass
class SagaStep:
    name: str
    action: Action
    compensation: Optional[Compensation] = None


class SagaFailed(BulkInvoiceError):
    """A saga step failed; completed steps have been compensated."""
    def __init__(self, step: str, error: Exception, compensation_errors: list[str]):
        self.step = step
        self.error = error
        self.compensation_errors = compensation_errors
        super().__init__(f"Step '{step}' failed: {error}")


class Saga:
    """Run steps in order; each action receives the shared context dict.

    The value an action returns is stored in the context under the step name.
    """

    def __init__(self, name: str):
        self.name = name
        self.steps: list[SagaStep] = []

    def add_step(self, name: str, action: Action, compensation: Optional[Compensation] = None) -> "Saga":
        self.steps.append(SagaStep(name, action, compensation))
        return self

    def run(self, context: Optional[dict] = None) -> dict:
        context = {} if context is None else context
        completed: list[SagaStep] = []
        for step in self.steps:
            try:
                context[step.name] = step.action(context)
            except Exception as e:
                logger.warning("%s: step '%s' failed: %s", self.name, step.name, e)
                errors = self._compensate(completed, context)
                raise SagaFailed(step.name, e, errors) from e
            completed.append(step)
        return context

    def _compensate(self, completed: list[SagaStep], context: dict) -> list[str]:
        errors: list[str] = []
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                logger.info("%s: compensating step '%s'", self.name, step.name)
                step.compensation(context)
            except Exception as e:
                logger.error("%s: compensation for '%s' failed: %s", self.name, step.name, e)
                errors.append(f"{step.name}: {e}")
        return errors
