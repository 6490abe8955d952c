"""Structured execution of commands, locally or on a remote host over ssh.

Commands are argument vectors, never interpolated strings. When a command
has to travel through ssh each argument is quoted with :func:`shlex.quote`
so the remote shell sees exactly the vector that was built locally.
"""

import shlex
import subprocess
from typing import IO, List, Optional, Sequence, Tuple, Union

from zfs_zap.logging_config import get_logger

logger = get_logger(__name__)

Stage = Sequence[str]


class CommandError(Exception):
    """Raised when a command exits with a non-zero status."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        message = f"'{shlex.join(self.argv)}' exited {returncode}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


def shell_pipeline(stages: Sequence[Stage]) -> str:
    """Render stages as a quoted ``a | b | c`` shell pipeline."""
    return " | ".join(shlex.join(stage) for stage in stages)


class CommandRunner:
    """Runs commands on the local machine."""

    @property
    def label(self) -> str:
        return "local"

    @property
    def is_remote(self) -> bool:
        return False

    def command_line(self, stages: Sequence[Stage]) -> List[str]:
        """
        Argument vector that runs ``stages`` as one pipeline.

        Args:
            stages: One or more argument vectors, stdout of each feeding the next

        Returns:
            A single argument vector suitable for :class:`subprocess.Popen`
        """
        if len(stages) == 1:
            return list(stages[0])
        return ["sh", "-c", shell_pipeline(stages)]

    def run(self, argv: Stage) -> str:
        """
        Run a command and return its stdout.

        Raises:
            CommandError: If the command fails or cannot be started
        """
        full_argv = self.command_line([argv])
        logger.debug("[%s] %s", self.label, shlex.join(full_argv))
        try:
            result = subprocess.run(full_argv, capture_output=True, text=True, check=False)
        except OSError as e:
            raise CommandError(full_argv, 127, str(e)) from e
        if result.returncode != 0:
            raise CommandError(full_argv, result.returncode, result.stderr)
        return result.stdout

    def popen(
        self,
        stages: Sequence[Stage],
        stdin: Optional[Union[int, IO[bytes]]] = None,
        stdout: Optional[Union[int, IO[bytes]]] = None,
    ) -> subprocess.Popen:
        """Start ``stages`` as one process for use in a pipeline."""
        full_argv = self.command_line(stages)
        logger.debug("[%s] %s", self.label, shlex.join(full_argv))
        try:
            return subprocess.Popen(full_argv, stdin=stdin, stdout=stdout)
        except OSError as e:
            raise CommandError(full_argv, 127, str(e)) from e


class SSHRunner(CommandRunner):
    """Runs commands on a remote host via ssh."""

    def __init__(self, host: str, user: Optional[str] = None, ssh_program: str = "ssh"):
        self.host = host
        self.user = user
        self.ssh_program = ssh_program

    @property
    def target(self) -> str:
        # Note: We don't escape the target as it's part of SSH syntax
        if self.user:
            return f"{self.user}@{self.host}"
        return self.host

    @property
    def label(self) -> str:
        return self.target

    @property
    def is_remote(self) -> bool:
        return True

    def command_line(self, stages: Sequence[Stage]) -> List[str]:
        return [self.ssh_program, "-o", "BatchMode=yes", self.target, shell_pipeline(stages)]


def run_pipeline(legs: Sequence[Tuple[CommandRunner, Sequence[Stage]]]) -> None:
    """
    Run a pipeline whose legs may execute on different hosts.

    Each leg is a runner and the stages it runs; the stdout of one leg feeds
    the stdin of the next. stderr is inherited.

    Raises:
        CommandError: If any leg exits with a non-zero status
    """
    processes: List[Tuple[List[str], subprocess.Popen]] = []
    previous_stdout = None
    try:
        for index, (runner, stages) in enumerate(legs):
            last = index == len(legs) - 1
            process = runner.popen(
                stages,
                stdin=previous_stdout,
                stdout=None if last else subprocess.PIPE,
            )
            if previous_stdout is not None:
                # Allow the upstream process to receive SIGPIPE if this one dies
                previous_stdout.close()
            previous_stdout = process.stdout
            processes.append((runner.command_line(stages), process))
    except CommandError:
        for _, process in processes:
            process.kill()
            process.wait()
        raise

    failures = []
    for argv, process in reversed(processes):
        returncode = process.wait()
        if returncode != 0:
            failures.append((argv, returncode))
    if failures:
        argv, returncode = failures[-1]
        raise CommandError(argv, returncode)
