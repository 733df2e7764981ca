"""
Custom exception classes for Azure DevOps field tooling.

Every SDK failure is turned into one of these before it reaches a command,
so per-item failures can be counted and logged with the service's own
explanation while fatal ones (bad token, missing scope) stay recognizable.
"""

from typing import Any, Dict, Optional, Type


class AzureDevOpsError(Exception):
    """
    Base exception for Azure DevOps API errors.

    Attributes:
        status_code: HTTP status code, when the failure came from a response
        message: Operator-facing message
        original_error: The SDK exception that was translated
        details: Extra context kept for the run log
    """

    def __init__(
        self,
        message: str = "Azure DevOps API error",
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
        details: Optional[Any] = None
    ):
        self.message = message
        self.status_code = status_code
        self.original_error = original_error
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.status_code:
            return f"[{self.status_code}] {self.message}"
        return self.message

    def to_dict(self) -> dict:
        """Flat form for the run log."""
        return {
            'error': type(self).__name__,
            'status_code': self.status_code,
            'message': self.message,
            'details': str(self.details) if self.details else None
        }


class NotFoundError(AzureDevOpsError):
    """
    HTTP 404: the work item, query or work item type is gone or hidden.

    Work items deleted between discovery and update end up here.
    """

    def __init__(self, resource: Optional[str] = None, original_error: Optional[Exception] = None, **kwargs):
        subject = resource or "Resource"
        super().__init__(
            message=f"{subject} not found. It may have been deleted, or the token cannot see it.",
            status_code=404,
            original_error=original_error,
            details={'resource': resource} if resource else None
        )


class AuthenticationError(AzureDevOpsError):
    """HTTP 401: the personal access token was refused."""

    def __init__(
        self,
        message: str = "The personal access token was rejected. It may be expired, revoked or mistyped.",
        original_error: Optional[Exception] = None
    ):
        super().__init__(message=message, status_code=401, original_error=original_error)


class PermissionDeniedError(AzureDevOpsError):
    """
    HTTP 403: the token is valid but lacks a scope or permission.

    Field copies need 'vso.work_write'; query rewrites also need edit
    permission on the query folder.
    """

    def __init__(
        self,
        operation: Optional[str] = None,
        required_scope: Optional[str] = None,
        original_error: Optional[Exception] = None,
        **kwargs
    ):
        message = "Permission denied"
        if operation:
            message += f" for {operation}"
        if required_scope:
            message += f"; the token needs the '{required_scope}' scope"
        else:
            message += "; check the token scopes and project permissions"

        super().__init__(
            message=message + ".",
            status_code=403,
            original_error=original_error,
            details={'operation': operation, 'required_scope': required_scope}
        )


class RateLimitError(AzureDevOpsError):
    """
    HTTP 429: the service is throttling this token.

    Writes are paced but never retried; the operator reruns.
    """

    def __init__(self, retry_after: Optional[int] = None, original_error: Optional[Exception] = None, **kwargs):
        if retry_after:
            message = f"Throttled by Azure DevOps. The service asked to wait {retry_after} seconds."
        else:
            message = "Throttled by Azure DevOps. Rerun after a short pause."

        super().__init__(
            message=message,
            status_code=429,
            original_error=original_error,
            details={'retry_after': retry_after}
        )
        self.retry_after = retry_after


class TransientError(AzureDevOpsError):
    """HTTP 500, 502, 503, 504: the service failed this call."""

    def __init__(self, status_code: int, original_error: Optional[Exception] = None):
        super().__init__(
            message=f"Azure DevOps could not complete the call (HTTP {status_code}). "
                    "Rerun once the service recovers.",
            status_code=status_code,
            original_error=original_error
        )


class BadRequestError(AzureDevOpsError):
    """
    HTTP 400: the service refused the request.

    Typical causes are a target field rejecting the copied value (type or
    allowed values), rewritten WIQL the service cannot parse, or a field
    reference name that does not exist.
    """

    def __init__(
        self,
        message: str = "The request was rejected by Azure DevOps.",
        original_error: Optional[Exception] = None,
        details: Optional[Any] = None,
        **kwargs
    ):
        super().__init__(message=message, status_code=400, original_error=original_error, details=details)


class ConflictError(AzureDevOpsError):
    """HTTP 409: the item changed on the server while this run was writing it."""

    def __init__(
        self,
        message: str = "The item was changed by someone else during the run. Rerun to pick up the new revision.",
        original_error: Optional[Exception] = None,
        **kwargs
    ):
        super().__init__(message=message, status_code=409, original_error=original_error)


class TimeoutError(AzureDevOpsError):
    """A call did not finish within its time limit (reported as HTTP 408)."""

    def __init__(self, timeout_seconds: int = 30, original_error: Optional[Exception] = None, **kwargs):
        super().__init__(
            message=f"No answer from Azure DevOps within {timeout_seconds} seconds.",
            status_code=408,
            original_error=original_error,
            details={'timeout_seconds': timeout_seconds}
        )


class ExternalToolError(AzureDevOpsError):
    """An external command-line tool (witadmin) exited with an error."""

    def __init__(self, command: str, return_code: int, output: Optional[str] = None):
        message = f"{command} exited with code {return_code}"
        if output:
            message = f"{message}: {output.strip()}"

        super().__init__(message=message, details={'command': command, 'return_code': return_code})
        self.return_code = return_code


# Status codes whose error class needs nothing beyond the original exception
_STATUS_ERRORS: Dict[int, Type[AzureDevOpsError]] = {
    401: AuthenticationError,
    403: PermissionDeniedError,
    404: NotFoundError,
    408: TimeoutError,
    409: ConflictError,
    429: RateLimitError,
}

_TRANSIENT_STATUS_CODES = (500, 502, 503, 504)


def extract_service_message(error: Exception) -> str:
    """
    Pull the most useful text out of an SDK exception.

    azure-devops raises AzureDevOpsServiceError whose ``message`` carries the
    server explanation (e.g. "TF401320: Rule Error for field ...").
    """
    original = getattr(error, 'original_error', None) or error
    message = getattr(original, 'message', None)
    if message:
        return str(message)
    return str(original)


def map_status_code_to_error(
    status_code: int,
    original_error: Optional[Exception] = None,
    **kwargs
) -> AzureDevOpsError:
    """
    Translate an HTTP status code into the matching error class.

    Args:
        status_code: HTTP status code of the failed call
        original_error: The SDK exception
        **kwargs: Class-specific values (retry_after, resource, operation, ...)
    """
    if status_code == 400:
        if original_error is not None and 'message' not in kwargs:
            kwargs['message'] = extract_service_message(original_error)
        return BadRequestError(original_error=original_error, **kwargs)

    if status_code in _TRANSIENT_STATUS_CODES:
        return TransientError(status_code=status_code, original_error=original_error)

    error_class = _STATUS_ERRORS.get(status_code)
    if error_class is AuthenticationError:
        return AuthenticationError(original_error=original_error)
    if error_class is not None:
        return error_class(original_error=original_error, **kwargs)

    return AzureDevOpsError(
        message=f"Azure DevOps returned HTTP {status_code}",
        status_code=status_code,
        original_error=original_error
    )
