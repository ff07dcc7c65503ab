"""
Operator error hierarchy.

Each error knows its category, whether retrying can help and how long to
wait before doing so. Handlers turn them into kopf errors with
``as_kopf_error()``; the refresh scheduler records them as events and moves
on to the next binding.
"""

import kopf


class OperatorError(Exception):
    """
    Base class of all errors raised by the operator.

    Subclasses set ``category``, ``retryable`` and ``delay`` as class
    defaults; the constructor can override them per instance.
    """

    category = "operator"
    retryable = True
    delay = 30
    user_action: str | None = None

    def __init__(
        self,
        message: str,
        category: str | None = None,
        retryable: bool | None = None,
        delay: int | None = None,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Args:
            message: What went wrong
            category: Overrides the class category
            retryable: Overrides whether kopf should retry
            delay: Overrides the retry delay in seconds
            user_action: Hint shown to whoever has to fix the problem
            cause: The lower-level exception, if any
        """
        super().__init__(message)
        if category is not None:
            self.category = category
        if retryable is not None:
            self.retryable = retryable
        if delay is not None:
            self.delay = delay
        if user_action is not None:
            self.user_action = user_action
        self.cause = cause

    def as_kopf_error(self) -> kopf.TemporaryError | kopf.PermanentError:
        if self.retryable:
            return kopf.TemporaryError(str(self), delay=self.delay)
        return kopf.PermanentError(str(self))

    def __str__(self) -> str:
        message = super().__str__()
        if not self.user_action:
            return message
        return f"{message}\nAction required: {self.user_action}"


class ValidationError(OperatorError):
    """A Vault resource carries an unusable value."""

    category = "validation"
    retryable = False
    user_action = "Fix the Vault resource spec"

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        if field:
            message = f"Validation error in field '{field}': {message}"
        super().__init__(message, user_action=user_action)
        self.field = field


class ConfigurationError(OperatorError):
    """The operator is missing something it needs, e.g. a refresh strategy."""

    category = "configuration"
    retryable = False
    user_action = "Review the operator configuration"


class BackendUnreachable(OperatorError):
    """Vault failed to answer, timed out or answered with a non-2xx status."""

    category = "backend"
    delay = 60

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        cause: Exception | None = None,
    ):
        prefix = f"HTTP {status_code}: " if status_code else ""
        super().__init__(f"Vault error: {prefix}{message}", cause=cause)
        self.status_code = status_code
        self.response_body = response_body


class SecretNotAccessible(OperatorError):
    """Fresh material for a binding could not be obtained from Vault."""

    category = "backend"
    delay = 60

    def __init__(
        self, name: str, namespace: str, message: str, cause: Exception | None = None
    ):
        super().__init__(
            f"Secret for {namespace}/{name} not accessible: {message}", cause=cause
        )
        self.name = name
        self.namespace = namespace


class MetadataMissing(OperatorError):
    """A managed secret has no usable staleness annotations."""

    category = "metadata"


class KubernetesAPIError(OperatorError):
    """The Kubernetes API rejected a request."""

    category = "kubernetes"
    user_action = "Check RBAC permissions and cluster connectivity"

    # Retrying does not help with these
    PERMANENT_REASONS = frozenset({"Forbidden", "Unauthorized", "Invalid"})

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        retryable: bool = True,
        cause: Exception | None = None,
    ):
        if reason:
            message = f"{message} (reason: {reason})"
        super().__init__(
            message,
            retryable=retryable and reason not in self.PERMANENT_REASONS,
            cause=cause,
        )
        self.reason = reason


class StoreWriteFailed(KubernetesAPIError):
    """A managed secret could not be created, replaced or deleted."""


class ListingFailed(OperatorError):
    """The Vault resources could not be listed; the whole pass is lost."""

    category = "listing"
    user_action = "Check that the Vault CRD is installed and readable"
