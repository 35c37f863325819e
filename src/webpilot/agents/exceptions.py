"""
WebPilot Exception Hierarchy

Every failure the browser agent can hit maps onto one of five categories:

1. Resolution failure  - target element/selector not found (recoverable by the model)
2. Action failure      - element found but the action had no observable effect
3. Transport failure   - cross-context request timed out or the receiver is gone
4. Model/API failure   - the model provider request failed (terminates the loop)
5. Turn ceiling        - the loop ran out of turns (explicit unresolved outcome)

Categories 1-3 never escape the executor/relay boundary: they are converted into
failed tool results. Category 4 stops the current loop run. Category 5 is reported
as an outcome, never thrown past the loop.
"""

import time
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorAction(Enum):
    """What action can be taken for this error."""

    # The model can pick another target or strategy
    MODEL_RECOVERABLE = "model_recoverable"

    # User can potentially fix and retry
    USER_FIXABLE = "user_fixable"

    # Cannot be fixed on-the-fly, must terminate
    TERMINAL = "terminal"


class WebPilotError(Exception):
    """
    Base exception class for all webpilot errors.

    Attributes:
        error_code: Unique error code for programmatic handling
        session_id: Session where the error occurred (if applicable)
        timestamp: When the error occurred
        context: Additional context information
        user_message: User-friendly error message
        developer_message: Detailed technical error message
        suggestion: Suggested fix or next steps (if applicable)
        error_kind: Tool-result category this error is reported as
    """

    error_kind: str = "error"

    def __init__(
        self,
        message: str,
        error_code: str = "WEBPILOT_ERROR",
        session_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        suggestion: Optional[str] = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.session_id = session_id
        self.timestamp = time.time()
        self.context = context or {}
        self.user_message = user_message or message
        self.developer_message = message
        self.suggestion = suggestion

    def get_error_action(self) -> ErrorAction:
        return ErrorAction.TERMINAL

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "error_kind": self.error_kind,
            "message": self.developer_message,
            "user_message": self.user_message,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "context": self.context,
            "suggestion": self.suggestion,
        }

    def __str__(self) -> str:
        parts = [f"[{self.error_code}]"]
        if self.session_id:
            parts.append(f"Session:{self.session_id}")
        parts.append(self.developer_message)
        return " ".join(parts)


# =============================================================================
# ACTION ERRORS (categories 1 and 2)
# =============================================================================

class ActionError(WebPilotError):
    """Base class for errors raised while executing a single browser action."""

    error_kind = "action"

    def __init__(self, message: str, action: Optional[str] = None, **kwargs):
        self.action = action
        error_code = kwargs.pop("error_code", "ACTION_ERROR")
        context = kwargs.pop("context", {})
        if action:
            context["action"] = action
        super().__init__(message, error_code=error_code, context=context, **kwargs)

    def get_error_action(self) -> ErrorAction:
        return ErrorAction.MODEL_RECOVERABLE


class ElementResolutionError(ActionError):
    """
    Raised when a selector or text query matches no element on the live page.

    Examples:
    - Selector is stale after a DOM rewrite
    - Text query matches nothing visible
    """

    error_kind = "resolution"

    def __init__(
        self,
        message: str,
        selector: Optional[str] = None,
        text: Optional[str] = None,
        **kwargs
    ):
        self.selector = selector
        self.text = text

        context = kwargs.pop("context", {})
        if selector:
            context["selector"] = selector
        if text:
            context["text"] = text

        super().__init__(
            message,
            error_code="ELEMENT_RESOLUTION_ERROR",
            context=context,
            user_message="The target element could not be found on the page.",
            suggestion="Call get_page_context to refresh the element list and pick another target.",
            **kwargs
        )


class ActionEffectError(ActionError):
    """Raised when every strategy ran without producing an observable effect."""

    error_kind = "no_effect"

    def __init__(
        self,
        message: str,
        attempts: Optional[List[str]] = None,
        **kwargs
    ):
        self.attempts = list(attempts or [])

        context = kwargs.pop("context", {})
        context["attempts"] = self.attempts

        super().__init__(
            message,
            error_code="ACTION_NO_EFFECT_ERROR",
            context=context,
            user_message="The action ran but the page did not react.",
            suggestion="Try a different element, a coordinate click, or a keyboard action.",
            **kwargs
        )


class ActionValidationError(ActionError):
    """
    Raised when tool arguments do not satisfy the tool's schema.

    Examples:
    - Unknown tool name
    - Missing required argument
    - Coordinate outside the 0-1000 grid
    """

    error_kind = "invalid_arguments"

    def __init__(
        self,
        message: str,
        valid_actions: Optional[List[str]] = None,
        arguments: Optional[Any] = None,
        **kwargs
    ):
        self.valid_actions = valid_actions
        self.arguments = arguments

        context = kwargs.pop("context", {})
        if valid_actions:
            context["valid_actions"] = valid_actions
        if arguments is not None:
            context["arguments"] = str(arguments)[:500]

        super().__init__(
            message,
            error_code="ACTION_VALIDATION_ERROR",
            context=context,
            user_message="The tool call arguments are invalid.",
            suggestion="Check the tool schema and resend the call with valid arguments.",
            **kwargs
        )


class UnsupportedActionError(ActionError):
    """Raised when the session's backend cannot perform the requested action."""

    error_kind = "unsupported"

    def __init__(self, message: str, backend: Optional[str] = None, **kwargs):
        self.backend = backend
        context = kwargs.pop("context", {})
        if backend:
            context["backend"] = backend
        super().__init__(
            message,
            error_code="UNSUPPORTED_ACTION_ERROR",
            context=context,
            user_message="This action is not available for the current page backend.",
            suggestion="Use coordinate-based tools (click, hover, type) with a screenshot instead.",
            **kwargs
        )


# =============================================================================
# TRANSPORT ERRORS (category 3)
# =============================================================================

class RelayError(WebPilotError):
    """Base class for cross-context messaging errors."""

    error_kind = "transport"

    def __init__(self, message: str, **kwargs):
        error_code = kwargs.pop("error_code", "RELAY_ERROR")
        super().__init__(message, error_code=error_code, **kwargs)

    def get_error_action(self) -> ErrorAction:
        return ErrorAction.MODEL_RECOVERABLE


class RelayTimeoutError(RelayError):
    """Raised when a request gets no response within its timeout window."""

    def __init__(
        self,
        message: str,
        message_type: Optional[str] = None,
        correlation_id: Optional[str] = None,
        timeout: Optional[float] = None,
        **kwargs
    ):
        self.message_type = message_type
        self.correlation_id = correlation_id
        self.timeout = timeout

        context = kwargs.pop("context", {})
        context.update({
            "message_type": message_type,
            "correlation_id": correlation_id,
            "timeout": timeout,
        })

        super().__init__(
            message,
            error_code="RELAY_TIMEOUT_ERROR",
            context=context,
            user_message="The page did not answer in time.",
            suggestion="The page may be busy or navigating; retry or refresh the page context.",
            **kwargs
        )


class ContextUnavailableError(RelayError):
    """Raised when the target context is not connected to the relay."""

    def __init__(self, message: str, address: Optional[str] = None, **kwargs):
        self.address = address
        context = kwargs.pop("context", {})
        if address:
            context["address"] = address
        super().__init__(
            message,
            error_code="CONTEXT_UNAVAILABLE_ERROR",
            context=context,
            user_message="The page context is not reachable.",
            suggestion="Reload the page or start a new conversation.",
            **kwargs
        )


# =============================================================================
# MODEL & API ERRORS (category 4)
# =============================================================================

class APIErrorClassification(Enum):
    """Classification of API errors for intelligent error handling."""

    # Critical (non-retryable)
    INSUFFICIENT_CREDITS = "insufficient_credits"
    AUTHENTICATION_FAILED = "authentication_failed"
    INVALID_MODEL = "invalid_model"
    PERMISSION_DENIED = "permission_denied"

    # Temporary (retryable)
    RATE_LIMIT = "rate_limit"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"

    # Request issues
    INVALID_REQUEST = "invalid_request"

    UNKNOWN = "unknown"


class ModelError(WebPilotError):
    """Base class for model and API response errors."""

    error_kind = "model"

    def __init__(self, message: str, **kwargs):
        error_code = kwargs.pop("error_code", "MODEL_ERROR")
        super().__init__(message, error_code=error_code, **kwargs)


class ModelResponseError(ModelError):
    """Raised when the model response cannot be interpreted (no content, no tool calls)."""

    def __init__(self, message: str, response_content: Optional[Any] = None, **kwargs):
        self.response_content = response_content
        context = kwargs.pop("context", {})
        if response_content is not None:
            context["response_content"] = str(response_content)[:500]
        super().__init__(
            message,
            error_code="MODEL_RESPONSE_ERROR",
            context=context,
            user_message="The model returned a response that could not be used.",
            suggestion="Retry the instruction or switch to another model.",
            **kwargs
        )


class ModelAPIError(ModelError):
    """
    API error with provider-specific error classification.

    Supports detection of:
    - Insufficient credits/quota
    - Rate limiting
    - Authentication failures
    - Network issues
    - Service availability
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        api_error_code: Optional[str] = None,
        api_error_type: Optional[str] = None,
        classification: Optional[str] = None,
        is_retryable: bool = False,
        retry_after: Optional[int] = None,
        suggested_action: Optional[str] = None,
        raw_response: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        self.provider = provider
        self.status_code = status_code
        self.api_error_code = api_error_code
        self.api_error_type = api_error_type
        self.classification = classification or APIErrorClassification.UNKNOWN.value
        self.is_retryable = is_retryable
        self.retry_after = retry_after
        self.raw_response = raw_response

        context = kwargs.pop("context", {})
        context.update({
            "provider": provider,
            "status_code": status_code,
            "api_error_code": api_error_code,
            "api_error_type": api_error_type,
            "classification": self.classification,
            "is_retryable": is_retryable,
            "retry_after": retry_after,
        })

        if not suggested_action:
            if self.classification == APIErrorClassification.INSUFFICIENT_CREDITS.value:
                suggested_action = f"Add credits to your {provider} account"
            elif self.classification == APIErrorClassification.RATE_LIMIT.value:
                suggested_action = (
                    f"Wait {retry_after} seconds before retrying" if retry_after
                    else "Wait before retrying or upgrade your plan"
                )
            elif self.classification == APIErrorClassification.AUTHENTICATION_FAILED.value:
                suggested_action = f"Check your {provider} API key configuration"
            elif self.classification == APIErrorClassification.SERVICE_UNAVAILABLE.value:
                suggested_action = "Service temporarily unavailable. Please try again later."

        super().__init__(
            message,
            error_code=f"MODEL_API_{self.classification.upper()}_ERROR",
            context=context,
            user_message=message,
            suggestion=suggested_action,
            **kwargs
        )

    def is_critical(self) -> bool:
        """Check if this is a critical error that cannot be retried."""
        return self.classification in [
            APIErrorClassification.INSUFFICIENT_CREDITS.value,
            APIErrorClassification.AUTHENTICATION_FAILED.value,
            APIErrorClassification.PERMISSION_DENIED.value,
            APIErrorClassification.INVALID_MODEL.value,
        ]

    @classmethod
    def from_provider_response(
        cls,
        provider: str,
        status_code: Optional[int] = None,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        exception: Optional[Exception] = None,
    ) -> "ModelAPIError":
        """
        Create a classified error from a provider HTTP failure.

        Works with whatever is available: a status code and parsed body from the
        response, or only the exception raised by the HTTP client.
        """
        if exception is not None:
            message = getattr(exception, "message", None) or str(exception) or type(exception).__name__
            if status_code is None:
                status_code = getattr(exception, "status", None)
        else:
            message = "API Error"

        headers = headers or {}
        classification = APIErrorClassification.UNKNOWN.value
        is_retryable = False
        retry_after = None
        api_error_code = None
        api_error_type = None

        error_data = body.get("error", {}) if isinstance(body, dict) else {}
        if isinstance(error_data, dict) and error_data:
            message = error_data.get("message", message)
            api_error_code = error_data.get("code")
            api_error_type = error_data.get("type")

        if status_code:
            if status_code == 429:
                if api_error_type == "insufficient_quota":
                    classification = APIErrorClassification.INSUFFICIENT_CREDITS.value
                else:
                    classification = APIErrorClassification.RATE_LIMIT.value
                    is_retryable = True
                    try:
                        retry_after = int(float(headers.get("retry-after", 60)))
                    except (TypeError, ValueError):
                        retry_after = 60
            elif status_code == 402:
                classification = APIErrorClassification.INSUFFICIENT_CREDITS.value
            elif status_code == 400 and "credit balance" in str(message).lower():
                classification = APIErrorClassification.INSUFFICIENT_CREDITS.value
            elif status_code == 400:
                classification = APIErrorClassification.INVALID_REQUEST.value
            elif status_code == 401:
                classification = APIErrorClassification.AUTHENTICATION_FAILED.value
            elif status_code == 403:
                classification = APIErrorClassification.PERMISSION_DENIED.value
            elif status_code == 404:
                classification = APIErrorClassification.INVALID_MODEL.value
            elif status_code == 408:
                classification = APIErrorClassification.TIMEOUT.value
                is_retryable = True
            elif status_code >= 500:
                classification = APIErrorClassification.SERVICE_UNAVAILABLE.value
                is_retryable = True
        elif exception is not None:
            name = type(exception).__name__.lower()
            if "timeout" in name:
                classification = APIErrorClassification.TIMEOUT.value
            else:
                classification = APIErrorClassification.NETWORK_ERROR.value
            is_retryable = True

        return cls(
            message=str(message),
            provider=provider,
            status_code=status_code,
            api_error_code=api_error_code,
            api_error_type=api_error_type,
            classification=classification,
            is_retryable=is_retryable,
            retry_after=retry_after,
            raw_response=body if isinstance(body, dict) else None,
        )

    def get_error_action(self) -> ErrorAction:
        if self.classification in [
            APIErrorClassification.INSUFFICIENT_CREDITS.value,
            APIErrorClassification.RATE_LIMIT.value,
            APIErrorClassification.SERVICE_UNAVAILABLE.value,
            APIErrorClassification.NETWORK_ERROR.value,
            APIErrorClassification.TIMEOUT.value,
        ]:
            return ErrorAction.USER_FIXABLE
        return ErrorAction.TERMINAL


# =============================================================================
# LOOP LIMIT ERRORS (category 5)
# =============================================================================

class AgentLimitError(WebPilotError):
    """Raised (and reported as an outcome) when the turn ceiling is reached."""

    error_kind = "turn_ceiling"

    def __init__(
        self,
        message: str,
        limit_type: str = "turns",
        current_value: Optional[int] = None,
        limit_value: Optional[int] = None,
        **kwargs
    ):
        self.limit_type = limit_type
        self.current_value = current_value
        self.limit_value = limit_value

        context = kwargs.pop("context", {})
        context.update({
            "limit_type": limit_type,
            "current_value": current_value,
            "limit_value": limit_value,
        })

        super().__init__(
            message,
            error_code="AGENT_LIMIT_ERROR",
            context=context,
            user_message=f"Unable to complete the task within {limit_value} turns.",
            suggestion="Break the task into smaller steps or raise the turn limit.",
            **kwargs
        )


# =============================================================================
# SESSION ERRORS
# =============================================================================

class SessionError(WebPilotError):
    """Base class for session lifecycle errors."""

    error_kind = "session"

    def __init__(self, message: str, **kwargs):
        error_code = kwargs.pop("error_code", "SESSION_ERROR")
        super().__init__(message, error_code=error_code, **kwargs)


class SessionNotFoundError(SessionError):
    """Raised when a session doesn't exist or has been torn down."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            error_code="SESSION_NOT_FOUND_ERROR",
            user_message="Session not found or has ended.",
            suggestion="Start a new conversation.",
            **kwargs
        )


class SessionBusyError(SessionError):
    """Raised when a session already has a task running."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            error_code="SESSION_BUSY_ERROR",
            user_message="A task is already running in this conversation.",
            suggestion="Wait for it to finish or abort it first.",
            **kwargs
        )


# =============================================================================
# BROWSER ERRORS
# =============================================================================

class BrowserError(WebPilotError):
    """Base class for browser-related errors."""

    error_kind = "browser"

    def __init__(self, message: str, **kwargs):
        error_code = kwargs.pop("error_code", "BROWSER_ERROR")
        super().__init__(message, error_code=error_code, **kwargs)


class BrowserNotInitializedError(BrowserError):
    """Raised when a page is requested before the browser was launched."""

    def __init__(self, message: str = "Browser has not been launched", **kwargs):
        super().__init__(
            message,
            error_code="BROWSER_NOT_INITIALIZED_ERROR",
            user_message="The browser is not running.",
            suggestion="Launch the browser with BrowserManager.create() first.",
            **kwargs
        )


class NavigationInterruptedError(BrowserError):
    """Raised when the page navigated away while a script was being evaluated."""

    def __init__(self, message: str = "Page navigated during script evaluation", **kwargs):
        super().__init__(
            message,
            error_code="NAVIGATION_INTERRUPTED_ERROR",
            **kwargs
        )
