"""Error taxonomy shared by tools, providers, credentials and the RPC bridge."""

from typing import Optional


class CodeloopError(Exception):
    """Base class for every error raised by this package."""


class ToolError(CodeloopError):
    """A tool failed; the dispatcher turns these into `Tool error: ...` text."""


class PathEscapeError(ToolError):
    def __init__(self, path: str):
        super().__init__(f"Path escapes project root: {path}")
        self.path = path


class FileTooLargeError(ToolError):
    def __init__(self, size: int):
        super().__init__(f"File too large ({size} bytes)")
        self.size = size


class NotAFileError(ToolError):
    def __init__(self, path: str, message: str = "Target is not a file"):
        super().__init__(message)
        self.path = path


class EditNotFoundError(ToolError):
    def __init__(self):
        super().__init__(
            "old_string not found in file. Make sure you read the file first and use "
            "the exact text including whitespace and indentation."
        )


class EditAmbiguousError(ToolError):
    def __init__(self, count: int):
        super().__init__(
            f"old_string found {count} times in file. Provide more surrounding context "
            "to make it unique, or set replace_all to true."
        )
        self.count = count


class CommandTimeoutError(ToolError):
    def __init__(self, timeout: float):
        super().__init__("Command timed out")
        self.timeout = timeout


class ToolValidationError(ToolError):
    """Tool arguments failed validation."""

    def __init__(self, message: str, tool_name: Optional[str] = None):
        super().__init__(message)
        self.tool_name = tool_name


class RunCancelled(CodeloopError):
    """Cooperative cancellation was observed. Never converted into tool text."""

    def __init__(self, message: str = "Run cancelled"):
        super().__init__(message)


class ProviderTransportError(CodeloopError):
    """Network or API failure while streaming from a model provider."""

    def __init__(self, provider_id: str, message: str):
        super().__init__(f"{provider_id}: {message}")
        self.provider_id = provider_id


class RpcError(CodeloopError):
    """Base class for tool-provider JSON-RPC failures."""


class RpcTimeoutError(RpcError):
    def __init__(self, method: str, timeout: float):
        super().__init__(f"MCP request timed out: {method}")
        self.method = method
        self.timeout = timeout


class RpcProcessExitError(RpcError):
    def __init__(self, message: str = "MCP server process exited"):
        super().__init__(message)


class RpcRemoteError(RpcError):
    def __init__(self, code: Optional[int], message: str):
        super().__init__(message)
        self.code = code


class CredentialError(CodeloopError):
    """Base class for credential resolution failures."""


class CredentialMissingError(CredentialError):
    def __init__(self, provider_id: str):
        super().__init__(f"{provider_id} credential not configured.")
        self.provider_id = provider_id


class CredentialRefreshError(CredentialError):
    def __init__(self, provider_id: str, message: str):
        super().__init__(f"{provider_id} token refresh failed: {message}")
        self.provider_id = provider_id


class CredentialModeError(CredentialError):
    def __init__(self, provider_id: str, auth_mode: str, found: str):
        super().__init__(f"{provider_id} is configured for {auth_mode} but the stored credential is {found}.")
        self.provider_id = provider_id
        self.auth_mode = auth_mode


class RunAlreadyActiveError(CodeloopError):
    def __init__(self, run_id: str):
        super().__init__(f"A run is already active for {run_id}")
        self.run_id = run_id
