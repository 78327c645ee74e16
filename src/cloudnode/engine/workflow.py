"""Workflow Orchestrator.

Runs the provisioning states in order::

    init -> safety_checked -> dependencies_resolved -> input_collected
    -> packages_installed -> config_written
    -> [database_initialized -> credentials_generated]
    -> network_configured -> services_restarted
    -> [firewall_configured -> networking_workaround_applied]
    -> kvm_permissions_fixed -> closed

Bracketed states run on a controller only. The first failed action, or an
interrupt at a prompt, moves the workflow straight to ``closed``. Actions
already applied stay applied: there is no rollback, and a re-run skips
whatever is already in place.
"""

import logging
import os
from typing import Callable, Optional

from cloudnode.collector.collector import InteractiveCollector
from cloudnode.common.exceptions import PermissionDenied, TemplateRenderError, UnsupportedPlatform
from cloudnode.common.models import (
    ActionOutcome,
    NodeRole,
    WorkflowResult,
    WorkflowState,
)
from cloudnode.engine import steps
from cloudnode.engine.audit import AuditLog
from cloudnode.engine.context import WorkflowContext
from cloudnode.executor.actions import Action
from cloudnode.executor.runner import ActionRunner

logger = logging.getLogger(__name__)

StepBuilder = Callable[[WorkflowContext], list[Action]]
CollectorFactory = Callable[[WorkflowContext], InteractiveCollector]

INTERRUPTED_REASON = "interrupted by operator"


def read_os_release(path) -> dict[str, str]:
    """Parse an os-release file into a dict with unquoted values."""
    values = {}
    with open(path, errors="replace") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            values[key] = value.strip().strip("\"'")
    return values


class Orchestrator:
    """Drives one provisioning run from ``init`` to ``closed``.

    Attributes:
        context: Role, settings and collaborators; replaced once the plan is collected
        state: Last state reached
    """

    def __init__(
        self,
        context: WorkflowContext,
        collector_factory: CollectorFactory,
        audit_factory: Callable[..., AuditLog] = AuditLog,
        geteuid: Optional[Callable[[], int]] = None,
    ):
        self.context = context
        self.state = WorkflowState.INIT
        self._collector_factory = collector_factory
        self._audit_factory = audit_factory
        self._geteuid = geteuid
        self.audit: Optional[AuditLog] = None

    def check_safety(self) -> None:
        """Require root on a supported platform.

        Raises:
            PermissionDenied: If not running with effective uid 0
            UnsupportedPlatform: If os-release is missing or names another distribution
        """
        geteuid = self._geteuid or os.geteuid
        if geteuid() != 0:
            raise PermissionDenied("cloudnode must be run as root")

        settings = self.context.settings
        try:
            os_release = read_os_release(settings.os_release_path)
        except OSError as e:
            raise UnsupportedPlatform(
                f"Cannot identify the platform: {e}",
                context={"path": str(settings.os_release_path)},
            ) from e
        platform = os_release.get("ID", "")
        if platform not in settings.supported_platforms:
            raise UnsupportedPlatform(
                f"Unsupported platform {platform or 'unknown'!r}",
                context={"supported": settings.supported_platforms},
            )
        logger.info(f"Platform {platform} {os_release.get('VERSION_ID', '')} as root: OK")

    def sequence(self) -> list[tuple[WorkflowState, Optional[StepBuilder]]]:
        """States to run after the safety check, in order.

        ``None`` marks the input collection state. The role is consulted at
        the two controller-only branch points and nowhere else.
        """
        is_controller = self.context.role == NodeRole.CONTROLLER
        sequence: list[tuple[WorkflowState, Optional[StepBuilder]]] = [
            (WorkflowState.DEPENDENCIES_RESOLVED, steps.dependency_actions),
            (WorkflowState.INPUT_COLLECTED, None),
            (WorkflowState.PACKAGES_INSTALLED, steps.package_actions),
            (WorkflowState.CONFIG_WRITTEN, steps.config_actions),
        ]
        if is_controller:
            sequence += [
                (WorkflowState.DATABASE_INITIALIZED, steps.database_actions),
                (WorkflowState.CREDENTIALS_GENERATED, steps.credential_actions),
            ]
        sequence += [
            (WorkflowState.NETWORK_CONFIGURED, steps.network_actions),
            (WorkflowState.SERVICES_RESTARTED, steps.service_actions),
        ]
        if is_controller:
            sequence += [
                (WorkflowState.FIREWALL_CONFIGURED, steps.firewall_actions),
                (WorkflowState.NETWORKING_WORKAROUND_APPLIED, steps.networking_workaround_actions),
            ]
        sequence.append((WorkflowState.KVM_PERMISSIONS_FIXED, steps.kvm_actions))
        return sequence

    def run(self) -> WorkflowResult:
        """Run the workflow to ``closed``.

        Precondition failures raise before the audit log is opened. Every
        later path, including interrupts and unexpected errors, finalizes
        the audit log exactly once. Errors other than ``OSError`` are
        re-raised after finalization.

        Raises:
            PreconditionError: From :meth:`check_safety`
        """
        self.check_safety()
        self._transition(WorkflowState.SAFETY_CHECKED)

        self.audit = self._audit_factory(self.context.settings.audit_log_path)
        runner = ActionRunner(self.audit)
        outcomes: list[ActionOutcome] = []
        result = WorkflowResult(success=False, reason="workflow did not complete")
        try:
            for target, build in self.sequence():
                if build is None:
                    self._collect_input()
                    failure = None
                else:
                    step_outcomes = self._run_step(target, build, runner)
                    outcomes.extend(step_outcomes)
                    failure = next((o for o in step_outcomes if o.failed), None)
                if failure is not None:
                    result = self._abort(target, failure, outcomes)
                    break
                self._transition(target)
            else:
                result = WorkflowResult(success=True, outcomes=outcomes)
        except (KeyboardInterrupt, EOFError):
            result = self._abort(self._next_state(), None, outcomes, interrupted=True)
        except OSError as e:
            target = self._next_state()
            logger.error(f"Aborting before {target.value}: {e}")
            result = WorkflowResult(
                success=False,
                failed_state=target,
                reason=f"{type(e).__name__}: {e}",
                outcomes=outcomes,
            )
        except Exception as e:
            result = WorkflowResult(
                success=False,
                failed_state=self._next_state(),
                reason=f"unexpected error: {type(e).__name__}: {e}",
                outcomes=outcomes,
            )
            raise
        finally:
            self.state = WorkflowState.CLOSED
            self.audit.finalize(result.success, self._final_diagnostic(result))

        logger.info(f"Workflow closed: {'success' if result.success else 'aborted'}")
        return result

    def _collect_input(self) -> None:
        collector = self._collector_factory(self.context)
        plan = collector.collect()
        self.context = self.context.with_plan(plan)
        self.audit.add_secret(plan.database_password.get_secret_value())

    def _run_step(
        self, target: WorkflowState, build: StepBuilder, runner: ActionRunner
    ) -> list[ActionOutcome]:
        logger.info(f"Entering {target.value}")
        try:
            actions = build(self.context)
        except TemplateRenderError as e:
            return [runner.record_failure(f"render configuration for {target.value}", str(e))]
        return runner.perform_all(actions)

    def _abort(
        self,
        target: WorkflowState,
        failure: Optional[ActionOutcome],
        outcomes: list[ActionOutcome],
        interrupted: bool = False,
    ) -> WorkflowResult:
        if interrupted:
            reason = INTERRUPTED_REASON
        else:
            reason = f"{failure.action}: {failure.reason}"
        logger.error(f"Aborting before {target.value}: {reason}")
        return WorkflowResult(
            success=False,
            failed_state=target,
            reason=reason,
            outcomes=outcomes,
            interrupted=interrupted,
        )

    def _next_state(self) -> WorkflowState:
        states = [WorkflowState.SAFETY_CHECKED] + [target for target, _ in self.sequence()]
        index = states.index(self.state)
        return states[index + 1] if index + 1 < len(states) else WorkflowState.CLOSED

    def _transition(self, target: WorkflowState) -> None:
        logger.debug(f"{self.state.value} -> {target.value}")
        self.state = target

    @staticmethod
    def _final_diagnostic(result: WorkflowResult) -> str:
        if result.success:
            return "provisioning complete"
        if result.failed_state is None:
            return result.reason
        return f"aborted at {result.failed_state.value}: {result.reason}"
