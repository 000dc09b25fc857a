"""Domain errors for pgdowngrade."""


class DowngradeError(RuntimeError):
    """Raised when the downgrade cannot continue safely."""


class PreconditionError(DowngradeError):
    """A required parameter or path is missing. Nothing has been touched."""


class ToolInvocationError(DowngradeError):
    """An external tool could not be started or exited non-zero."""

    def __init__(self, tool: str, message: str):
        super().__init__(f"{tool} failed: {message}")
        self.tool = tool


class FilesystemError(DowngradeError):
    """A rename, removal or rewrite on the data directory failed."""


class StepFailedError(DowngradeError):
    """A downgrade step failed, leaving the data directory in ``state``."""

    def __init__(self, message: str, step: str, state):
        super().__init__(message)
        self.step = step
        self.state = state
        self.suppressed = []
