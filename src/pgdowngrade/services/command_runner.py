"""Subprocess execution service for pgdowngrade."""

import os
import subprocess
from collections import deque
from typing import Deque, List, Optional

from pgdowngrade.errors import ToolInvocationError


class CommandRunner:
    """Runs external commands with consistent error handling."""

    TAIL_LINES = 20

    def __init__(self, logger, default_timeout: Optional[float] = None, subprocess_module=subprocess):
        self.logger = logger
        self.default_timeout = default_timeout
        self.subprocess = subprocess_module

    def run(
        self,
        cmd: List[str],
        tool: Optional[str] = None,
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        tool_name = tool or os.path.basename(cmd[0])
        cmd_str = " ".join(cmd)
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout

        try:
            result = self.subprocess.run(
                cmd,
                text=True,
                encoding="utf-8",
                errors="replace",
                capture_output=capture_output,
                timeout=effective_timeout,
                input=input_text,
            )
        except FileNotFoundError as exc:
            raise ToolInvocationError(
                tool_name, f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ToolInvocationError(
                tool_name, f"Command timed out after {effective_timeout}s: {cmd_str}"
            ) from exc
        except OSError as exc:
            raise ToolInvocationError(tool_name, f"Failed to execute command: {cmd_str}. {exc}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode == 0:
            return result

        stderr = (result.stderr or "").strip() if capture_output else ""
        message = f"Command failed ({result.returncode}): {cmd_str}"
        if stderr:
            message = f"{message}\n{stderr}"

        if check:
            raise ToolInvocationError(tool_name, message)

        self.logger.warning(message)
        return result

    def stream(self, cmd: List[str], tool: Optional[str] = None) -> int:
        """Run ``cmd`` to completion, passing each output line through to the log.

        Standard error is merged into standard output and decoded as UTF-8, with
        undecodable bytes replaced. A non-zero exit raises
        ``ToolInvocationError`` carrying the last lines of output.
        """
        tool_name = tool or os.path.basename(cmd[0])
        cmd_str = " ".join(cmd)
        self.logger.debug("Executing: %s", cmd_str)

        try:
            process = self.subprocess.Popen(
                cmd,
                stdout=self.subprocess.PIPE,
                stderr=self.subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except FileNotFoundError as exc:
            raise ToolInvocationError(
                tool_name, f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except OSError as exc:
            raise ToolInvocationError(tool_name, f"Failed to execute command: {cmd_str}. {exc}") from exc

        last_lines: Deque[str] = deque(maxlen=self.TAIL_LINES)
        try:
            if process.stdout:
                for line in process.stdout:
                    cleaned = line.rstrip()
                    if not cleaned:
                        continue
                    last_lines.append(cleaned)
                    self.logger.info("[%s] %s", tool_name, cleaned)
            returncode = process.wait()
        except BaseException:
            process.kill()
            process.wait()
            raise

        if returncode == 0:
            return returncode

        message = f"Command failed ({returncode}): {cmd_str}"
        if last_lines:
            message = f"{message}\n" + "\n".join(last_lines)
        raise ToolInvocationError(tool_name, message)
