"""Subprocess execution for external tools.

Every package manager, database, firewall and service call goes through
:class:`CommandRunner` so that it is logged and bounded by a timeout in
one place.
"""

import logging
import os
import shlex
import subprocess
from typing import Mapping, Optional, Sequence

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    """Captured result of one external tool invocation."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def detail(self) -> str:
        """Raw failure detail: stderr, else stdout, else the exit status."""
        text = self.stderr.strip() or self.stdout.strip()
        return text or f"exit status {self.returncode}"


class CommandRunner:
    """Run external tools synchronously with captured output.

    Attributes:
        timeout: Seconds before a call is killed and reported as failed
    """

    def __init__(self, timeout: int = 1800):
        self.timeout = timeout

    def run(
        self,
        args: Sequence[str],
        input: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        """Run ``args`` and return its result. Non-zero exit is not an error here.

        Args:
            args: Command and arguments, never passed through a shell
            input: Text written to stdin (stdin is /dev/null otherwise)
            env: Extra environment variables, not logged

        Raises:
            OSError: If the tool cannot be executed
            subprocess.TimeoutExpired: If the tool runs past the timeout
        """
        args = [str(arg) for arg in args]
        logger.info(f"Run: {shlex.join(args)}")
        full_env = None
        if env:
            full_env = {**os.environ, **env}
        stdin_kwargs = {"input": input} if input is not None else {"stdin": subprocess.DEVNULL}
        completed = subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            env=full_env,
            **stdin_kwargs,
        )
        result = CommandResult(
            args=args,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if not result.ok:
            logger.debug(f"Exit {result.returncode} from {args[0]}: {result.detail()}")
        return result
