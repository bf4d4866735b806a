############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# process.py: Bounded external command execution
#
############################################################

"""Run external tools without a shell and with a hard timeout."""

import subprocess
from dataclasses import dataclass
from typing import Sequence

from temper.logging_config import get_logger

logger = get_logger(__name__)

TIMEOUT_EXIT_CODE = -1
NOT_FOUND_EXIT_CODE = 127


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of a finished (or killed) external command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def run_command(args: Sequence[str], timeout: float = 30.0) -> ProcessResult:
    """Execute ``args`` and wait at most ``timeout`` seconds.

    On timeout the child is killed and reaped by ``subprocess.run`` and the
    result carries exit code -1 with whatever output was captured.
    """
    if not args:
        return ProcessResult(TIMEOUT_EXIT_CODE, "", "empty command")

    try:
        result = subprocess.run(
            list(args),
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        logger.debug("command_timeout", command=args[0], timeout=timeout)
        return ProcessResult(
            TIMEOUT_EXIT_CODE,
            _decode(e.stdout),
            _decode(e.stderr) or "Command timed out",
        )
    except FileNotFoundError:
        return ProcessResult(NOT_FOUND_EXIT_CODE, "", f"{args[0]}: command not found")
    except OSError as e:
        return ProcessResult(TIMEOUT_EXIT_CODE, "", str(e))

    return ProcessResult(result.returncode, result.stdout, result.stderr)


def _decode(output) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode(errors="replace")
    return output
