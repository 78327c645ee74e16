"""Idempotent Action Runner.

Checks each action's goal state before mutating anything, applies the
action when needed and records exactly one audit entry per invocation.
"""

import logging
import subprocess
from typing import Iterable

from cloudnode.common.exceptions import ActionError
from cloudnode.common.models import ActionOutcome
from cloudnode.engine.audit import AuditLog
from cloudnode.executor.actions import Action

logger = logging.getLogger(__name__)


class ActionRunner:
    """Runs actions against the host and reports their outcomes.

    Attributes:
        audit: Audit log receiving one entry per :meth:`perform` call
    """

    def __init__(self, audit: AuditLog):
        self.audit = audit

    def perform(self, action: Action) -> ActionOutcome:
        """Apply ``action`` unless its goal already holds.

        A non-zero exit of the backing tool, or a failure to run it at all,
        yields a failed outcome carrying the tool's raw detail, as does a
        check that cannot decode what it finds on the host. No retry.
        """
        description = action.describe()
        try:
            if action.is_satisfied():
                outcome = ActionOutcome.skipped(description)
            else:
                result = action.apply()
                if result is not None and not result.ok:
                    outcome = ActionOutcome.failure(description, result.detail())
                else:
                    outcome = ActionOutcome.applied(description)
        except (OSError, ValueError, subprocess.SubprocessError, ActionError) as e:
            outcome = ActionOutcome.failure(description, f"{type(e).__name__}: {e}")

        if outcome.failed:
            logger.error(f"{description}: failed: {outcome.reason}")
        else:
            logger.info(f"{description}: {outcome.status.value}")
        self.audit.record(description, outcome.status.value, outcome.reason)
        return outcome

    def perform_all(self, actions: Iterable[Action]) -> list[ActionOutcome]:
        """Perform actions in order, stopping after the first failure."""
        outcomes = []
        for action in actions:
            outcome = self.perform(action)
            outcomes.append(outcome)
            if outcome.failed:
                break
        return outcomes

    def record_failure(self, description: str, reason: str) -> ActionOutcome:
        """Record a failure that happened before an action could be built."""
        outcome = ActionOutcome.failure(description, reason)
        logger.error(f"{description}: failed: {reason}")
        self.audit.record(description, outcome.status.value, reason)
        return outcome
