"""
Step runner for multi-step operations that have no transaction to fall back on.
"""

from typing import Any, Callable, Optional

from ..models.core import FailedStep, SagaOutcome
from .logging_config import get_logger
from .opensearch_client import OpenSearchError

logger = get_logger(__name__)


class Saga:
    """Run named steps in order and record what succeeded and what failed.

    A strict saga re-raises the first engine failure after recording it. A
    best-effort saga logs the failure and moves on to the next step.
    """

    def __init__(self, operation: str, best_effort: bool = False):
        self.operation = operation
        self.best_effort = best_effort
        self._outcome = SagaOutcome(operation=operation)

    def step(self, name: str, func: Callable[..., Any], *args, **kwargs) -> Optional[Any]:
        try:
            result = func(*args, **kwargs)
        except OpenSearchError as e:
            self._outcome.failed_steps.append(FailedStep(step=name, reason=str(e)))
            if not self.best_effort:
                logger.error(f'{self.operation}: step {name} failed: {e}')
                raise
            logger.warning(f'{self.operation}: step {name} failed, continuing: {e}')
            return None
        self._outcome.succeeded_steps.append(name)
        return result

    @property
    def outcome(self) -> SagaOutcome:
        return self._outcome
