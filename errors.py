"""
Error taxonomy for Bedrock Relay.

AuthorizationError    caller not allow-listed; terminal, no retry.
ToolError             a single tool call failed; shown to the model, loop continues.
TransientUpstreamError  completion API failure that is safe to retry later.
PermanentUpstreamError  completion API failure that will not heal by waiting.
ReconciliationError   commit/push failure after the loop; reported only.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for relay errors"""
    pass


class AuthorizationError(RelayError):
    pass


class ToolError(RelayError):
    pass


class UpstreamError(RelayError):
    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.code = code


class TransientUpstreamError(UpstreamError):
    pass


class PermanentUpstreamError(UpstreamError):
    pass


class ReconciliationError(RelayError):
    pass
