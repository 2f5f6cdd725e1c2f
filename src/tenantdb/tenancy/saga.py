"""Compensating actions for multi-step provisioning."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog


logger = structlog.get_logger()


@dataclass(frozen=True)
class Compensation:
    """Undo action registered by a completed step."""

    name: str
    action: Callable[[], Awaitable[Any]]


class CompensationFailure(Exception):
    """One undo action that raised while unwinding."""

    def __init__(self, name: str, error: Exception) -> None:
        self.name = name
        self.error = error
        super().__init__(f"{name}: {type(error).__name__}: {error}")


class CompensationStack:
    """Undo actions run in reverse registration order.

    Usage:
        stack = CompensationStack()
        await create_database()
        stack.push("drop_database", drop_database)
        ...
        failures = await stack.unwind()
    """

    def __init__(self) -> None:
        self._steps: list[Compensation] = []

    def __len__(self) -> int:
        return len(self._steps)

    def push(self, name: str, action: Callable[[], Awaitable[Any]]) -> None:
        self._steps.append(Compensation(name, action))

    def discard(self) -> None:
        """Forget every undo action once the whole operation succeeded."""
        self._steps.clear()

    async def unwind(self) -> list[CompensationFailure]:
        """Run every undo action, newest first, even if some fail.

        Returns:
            Failures of undo actions, empty when the rollback was clean
        """
        failures: list[CompensationFailure] = []
        while self._steps:
            step = self._steps.pop()
            try:
                await step.action()
                logger.info("compensation_applied", step=step.name)
            except Exception as exc:
                failures.append(CompensationFailure(step.name, exc))
        return failures
