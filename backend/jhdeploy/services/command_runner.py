"""Execution of external build and deployment tools"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from jhdeploy.core.exceptions import CommandError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    cmd: List[str]
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 20) -> str:
        """Last lines of combined output, for diagnostics."""
        combined = (self.stdout or "") + (self.stderr or "")
        return "\n".join(combined.rstrip().splitlines()[-lines:])


class CommandRunner:
    """Runs tools like mvn, docker and git as asyncio subprocesses.

    Cancelling the awaiting task terminates the child process.
    """

    def __init__(self, timeout: float = 1800, env: Optional[Dict[str, str]] = None):
        self.timeout = timeout
        self.env = env

    def _environment(self, extra_env: Optional[Dict[str, str]]) -> Dict[str, str]:
        env = os.environ.copy()
        if self.env:
            env.update(self.env)
        if extra_env:
            env.update(extra_env)
        return env

    async def run(
        self,
        cmd: List[str],
        cwd: Optional[str] = None,
        input_text: Optional[str] = None,
        timeout: Optional[float] = None,
        check: bool = True,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """Run a command and return its result.

        Raises CommandError when the command cannot start, times out, or
        (with check=True) exits non-zero.
        """
        timeout = timeout or self.timeout
        logger.info(f"Running: {' '.join(cmd)}")
        start = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=self._environment(env),
            )
        except OSError as e:
            raise CommandError(f"Could not start {cmd[0]}: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(input_text.encode() if input_text is not None else None),
                timeout,
            )
        except asyncio.TimeoutError:
            result = CommandResult(
                cmd=cmd, returncode=None, duration=time.monotonic() - start
            )
            raise CommandError(f"{cmd[0]} timed out after {timeout:.0f}s", result)
        finally:
            # Timed out or cancelled
            if process.returncode is None:
                await _terminate(process)

        result = CommandResult(
            cmd=cmd,
            returncode=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration=time.monotonic() - start,
        )
        logger.debug(f"{cmd[0]} exited {result.returncode} in {result.duration:.1f}s")
        if check and not result.ok:
            raise CommandError(
                f"{' '.join(cmd[:3])} exited with code {result.returncode}", result
            )
        return result


async def _terminate(process, grace: float = 10) -> None:
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), grace)
    except asyncio.TimeoutError:
        logger.warning(f"Process {process.pid} ignored SIGTERM, killing it")
        process.kill()
        await process.wait()
