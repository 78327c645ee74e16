"""Command line interface for cloudnode."""

import logging
import sys
from typing import Optional

import click
import typer

from cloudnode import __version__
from cloudnode.collector.collector import InteractiveCollector, build_defaults
from cloudnode.collector.hostinfo import HostInspector
from cloudnode.collector.validators import is_supported_role
from cloudnode.common.config import Settings
from cloudnode.common.exceptions import (
    EXIT_INTERRUPTED,
    EXIT_SUCCESS,
    ActionFailure,
    ProvisioningError,
    UsageError,
    WorkflowInterrupted,
)
from cloudnode.common.models import NodeRole, WorkflowResult, required_packages
from cloudnode.engine.context import WorkflowContext
from cloudnode.engine.workflow import Orchestrator

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cloudnode {__version__}")
        raise typer.Exit()


def _role_callback(value: str) -> str:
    if not is_supported_role(value):
        choices = ", ".join(role.value for role in NodeRole)
        raise typer.BadParameter(f"{value!r} is not one of: {choices}")
    return value


def _make_collector(context: WorkflowContext) -> InteractiveCollector:
    inspector = HostInspector(context.backends.commands)
    defaults = build_defaults(context.role, context.settings, inspector.defaults())
    return InteractiveCollector(context.role, defaults)


@app.command()
def install(
    node_type: str = typer.Option(
        NodeRole.CONTROLLER.value,
        "--type",
        "-t",
        callback=_role_callback,
        help="Node role to install: controller or compute.",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> int:
    """Provision this host as a cloud controller or compute node.

    Prompts for addresses, tenant network parameters and the database root
    password, then installs and configures the node. Safe to run again
    after a failure: steps already in place are skipped.
    """
    settings = Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    role = NodeRole(node_type)
    logger.info(f"Installing {role.value} node with packages: {', '.join(required_packages(role))}")

    context = WorkflowContext.create(role, settings)
    orchestrator = Orchestrator(context, collector_factory=_make_collector)
    try:
        result = orchestrator.run()
        _raise_for_result(result)
    except WorkflowInterrupted as e:
        typer.echo(f"\n{e.message}. Nothing further was changed.", err=True)
        return e.exit_code
    except ActionFailure as e:
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"See {settings.audit_log_path}. Fix the problem and run again.", err=True)
        return e.exit_code
    except ProvisioningError as e:
        typer.echo(f"Error: {e}", err=True)
        return e.exit_code

    typer.echo(f"The {role.value} node is provisioned. Log: {settings.audit_log_path}")
    return EXIT_SUCCESS


def _raise_for_result(result: WorkflowResult) -> None:
    """Turn an aborted workflow result into the matching error."""
    if result.success:
        return
    state = result.failed_state.value if result.failed_state else "unknown"
    if result.interrupted:
        raise WorkflowInterrupted(context={"state": state})
    raise ActionFailure(f"Provisioning step {state}", result.reason)


# Entry point for console script
def main(argv: Optional[list[str]] = None) -> int:
    """Parse CLI arguments and run the installer, returning the exit code.

    Click's usage errors (bad role, option missing its argument, unknown
    option) are reported here with the usage exit code instead of click's
    default of 2.
    """
    if argv is None:
        argv = sys.argv[1:]
    try:
        rv = app(args=list(argv), prog_name="cloudnode", standalone_mode=False)
    except click.UsageError as e:
        e.show()
        error = UsageError(e.format_message())
        logger.debug(f"Usage error: {error}")
        return error.exit_code
    except click.Abort:
        typer.echo("Aborted.", err=True)
        return EXIT_INTERRUPTED
    return rv if isinstance(rv, int) else EXIT_SUCCESS
