"""Shell command execution confined to the sandbox directory."""

from __future__ import annotations

import shlex
import subprocess
import tempfile
import time
from collections.abc import Mapping
from pathlib import Path

from pydantic import Field

from task_orchestrator.errors import ToolCapabilityError
from task_orchestrator.tools.base import StrictModel, ToolCapability, ToolKind, ToolOperation

ALLOWED_COMMANDS = frozenset(
    {
        "ls", "cat", "head", "tail", "grep", "find", "wc",
        "mkdir", "touch", "cp", "mv", "rm", "echo", "pwd", "date",
        "curl", "wget", "ping", "traceroute", "dig", "nslookup",
        "python", "python3", "node", "npm", "pip", "git",
    }
)
DISALLOWED_COMMANDS = frozenset(
    {
        "sudo", "su", "chmod", "chown", "chgrp",
        "dd", "mkfs", "apt", "apt-get", "yum", "dnf",
        "systemctl", "service", "firewall-cmd", "iptables",
        "ssh", "scp", "sftp", "telnet", "ftp",
    }
)
SCRIPT_INTERPRETERS = {
    "bash": (".sh", "bash"),
    "sh": (".sh", "sh"),
    "python": (".py", "python3"),
    "python3": (".py", "python3"),
    "node": (".js", "node"),
}


class ExecuteCommandInput(StrictModel):
    command: str = Field(min_length=1)


class RunScriptInput(StrictModel):
    script: str = Field(min_length=1)
    interpreter: str = "bash"


class CommandOutput(StrictModel):
    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: float


class ShellTool(ToolCapability):
    """Run allow-listed commands without a shell, in the sandbox directory."""

    kind = ToolKind.SHELL

    def __init__(
        self,
        root: Path,
        *,
        timeout_s: float = 30.0,
        allowed_commands: frozenset[str] = ALLOWED_COMMANDS,
        disallowed_commands: frozenset[str] = DISALLOWED_COMMANDS,
    ) -> None:
        self.root = Path(root)
        self.timeout_s = timeout_s
        self.allowed_commands = allowed_commands
        self.disallowed_commands = disallowed_commands

    def initialize(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def operations(self) -> Mapping[str, ToolOperation]:
        return {
            "execute_command": ToolOperation(
                ExecuteCommandInput, CommandOutput, self.execute_command
            ),
            "run_script": ToolOperation(RunScriptInput, CommandOutput, self.run_script),
        }

    def is_command_allowed(self, command: str) -> bool:
        try:
            argv = shlex.split(command)
        except ValueError:
            return False
        if not argv:
            return False
        base_command = Path(argv[0]).name
        if base_command in self.disallowed_commands:
            return False
        if self.allowed_commands:
            return base_command in self.allowed_commands
        return True

    def execute_command(self, payload: ExecuteCommandInput) -> CommandOutput:
        if not self.is_command_allowed(payload.command):
            raise ToolCapabilityError(f"Command not allowed: {payload.command}")
        return self.run_argv(shlex.split(payload.command), display=payload.command)

    def run_script(self, payload: RunScriptInput) -> CommandOutput:
        interpreter = SCRIPT_INTERPRETERS.get(payload.interpreter.lower())
        if interpreter is None:
            raise ToolCapabilityError(f"Interpreter not allowed: {payload.interpreter}")
        suffix, binary = interpreter
        with tempfile.NamedTemporaryFile(
            "w",
            suffix=suffix,
            dir=self.root,
            delete=False,
            encoding="utf-8",
        ) as handle:
            handle.write(payload.script)
            script_path = Path(handle.name)
        try:
            return self.run_argv([binary, str(script_path)], display=f"{binary} {script_path.name}")
        finally:
            script_path.unlink(missing_ok=True)

    def run_argv(self, argv: list[str], *, display: str) -> CommandOutput:
        started_at = time.perf_counter()
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                cwd=self.root,
                timeout=self.timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise ToolCapabilityError(
                f"Command timed out after {self.timeout_s:.1f}s: {display}"
            ) from exc
        except FileNotFoundError as exc:
            raise ToolCapabilityError(f"Command not found: {argv[0]}") from exc
        return CommandOutput(
            command=display,
            exit_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            duration_ms=round((time.perf_counter() - started_at) * 1000.0, 2),
        )
