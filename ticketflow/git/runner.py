"""Git command runner.

Every git call goes through run_git(), which never raises: timeouts and a
missing git binary come back as failed GitResults. Callers that cannot
continue without the result wrap it in require_success().
"""

import subprocess
from dataclasses import dataclass
from pathlib import Path

from ticketflow.lib.errors import TransientIOError

DEFAULT_TIMEOUT = 30

# Network operations (fetch, push, ls-remote)
GIT_TIMEOUT_SECONDS = 60


@dataclass
class GitResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def run_git(args: list[str], cwd: Path, timeout: int = DEFAULT_TIMEOUT) -> GitResult:
    """Run `git -C <cwd> <args>` and capture its output."""
    cmd = ["git", "-C", str(cwd)] + args
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        return GitResult(-1, "", f"Command timed out after {timeout}s", timed_out=True)
    except FileNotFoundError:
        return GitResult(127, "", "git executable not found")
    return GitResult(result.returncode, result.stdout, result.stderr)


def require_success(result: GitResult, action: str) -> GitResult:
    """Raise TransientIOError unless result succeeded."""
    if not result.success:
        raise TransientIOError(f"git {action} failed", result.stderr)
    return result
