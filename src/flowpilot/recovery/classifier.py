"""Error classifier - Maps a failure to a taxonomy tag, severity and recoverability."""

from dataclasses import dataclass

from flowpilot.core.types import ErrorType, Severity, Step


# Ordered: the first category with a matching phrase wins
CLASSIFICATION_RULES: tuple[tuple[ErrorType, tuple[str, ...]], ...] = (
    (ErrorType.SELECTOR, ("selector", "element not found", "no element matches")),
    (ErrorType.NETWORK, ("net::", "network", "fetch")),
    (ErrorType.TIMEOUT, ("timeout", "timed out")),
    (ErrorType.VALIDATION, ("validation", "invalid")),
    (ErrorType.PERMISSION, ("permission", "denied", "unauthorized")),
)

HIGH_SEVERITY_RETRIES = 3
UNRECOVERABLE_RETRIES = 5


@dataclass(frozen=True)
class Classification:
    """Classifier verdict for one failure."""

    error_type: ErrorType
    severity: Severity
    is_recoverable: bool


def error_message(error: BaseException | str | None) -> str:
    """Best-effort message text for an error value."""
    if error is None:
        return ""
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return str(error)


def classify(error: BaseException | str | None) -> ErrorType:
    """Classify an error by case-insensitive phrase matching.

    Args:
        error: Exception or error message

    Returns:
        The first matching ErrorType, or UNKNOWN
    """
    message = error_message(error).lower()
    for error_type, phrases in CLASSIFICATION_RULES:
        if any(phrase in message for phrase in phrases):
            return error_type
    return ErrorType.UNKNOWN


def determine_severity(error_type: ErrorType, step: Step | None, retry_count: int) -> Severity:
    """Severity of a failure given the step and how often it was retried."""
    if step is not None and step.is_authentication_step:
        return Severity.CRITICAL
    if error_type is ErrorType.NETWORK:
        return Severity.HIGH
    if retry_count >= HIGH_SEVERITY_RETRIES:
        return Severity.HIGH
    if step is not None and step.continue_on_failure:
        return Severity.LOW
    return Severity.MEDIUM


def is_recoverable(error_type: ErrorType, severity: Severity, retry_count: int) -> bool:
    """Whether a recovery attempt is worthwhile."""
    if severity is Severity.CRITICAL:
        return False
    if retry_count >= UNRECOVERABLE_RETRIES:
        return False
    return error_type is not ErrorType.PERMISSION


class ErrorClassifier:
    """Pure classifier combining type, severity and recoverability."""

    def evaluate(
        self,
        error: BaseException | str | None,
        step: Step | None = None,
        retry_count: int = 0,
    ) -> Classification:
        """Classify a failure.

        Args:
            error: Exception or error message
            step: The failing step, if known
            retry_count: Number of prior retries

        Returns:
            Classification
        """
        error_type = classify(error)
        severity = determine_severity(error_type, step, retry_count)
        return Classification(
            error_type=error_type,
            severity=severity,
            is_recoverable=is_recoverable(error_type, severity, retry_count),
        )
