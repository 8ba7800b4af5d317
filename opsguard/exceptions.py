"""
OPSGUARD - Exception Hierarchy
==============================

Structured exception types for the authorization core.

Exception Categories:
    - NotAuthenticatedError: No user could be established for the session
    - PermissionDeniedError: Actor lacks a required capability (terminal)
    - StepUpRequired: Control-flow marker, fresh identity proof needed
    - StepUpFailedError: Challenge service rejected the proof
    - NoPendingChallengeError: Completing or dismissing a challenge that is not open
    - AuditWriteError: Audit sink failure (logged, never escalated)
    - IdentityServiceError: Transport failures talking to the console backend
"""

from typing import Any, Dict, Iterable, List, Optional


class OpsGuardError(Exception):
    """
    Base exception for all authorization core errors.

    Attributes:
        message: Human-readable error description
        code: Optional error code for programmatic handling
        details: Optional dict with additional context
        recoverable: Whether the caller may retry the same operation
    """

    recoverable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


# =============================================================================
# IDENTITY ERRORS
# =============================================================================


class NotAuthenticatedError(OpsGuardError):
    """No authenticated user is available."""

    def __init__(self, message: str = "Authentication required", **kwargs):
        kwargs.setdefault("code", "not_authenticated")
        super().__init__(message, **kwargs)


class IdentityServiceError(OpsGuardError):
    """The console backend could not be reached or answered with an error."""

    recoverable = True

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        kwargs.setdefault("code", "identity_service_error")
        super().__init__(message, **kwargs)
        self.status_code = status_code


# =============================================================================
# AUTHORIZATION ERRORS
# =============================================================================


class PermissionDeniedError(OpsGuardError):
    """Actor lacks one or more required capabilities. No step-up can substitute."""

    def __init__(
        self,
        missing_permissions: Iterable[str],
        action_name: Optional[str] = None,
        message: str = "You do not have the required permissions to perform this action.",
        **kwargs,
    ):
        kwargs.setdefault("code", "permission_denied")
        super().__init__(message, **kwargs)
        self.missing_permissions: List[str] = sorted(missing_permissions)
        self.action_name = action_name
        self.details.setdefault("missing_permissions", self.missing_permissions)


# =============================================================================
# STEP-UP ERRORS
# =============================================================================


class StepUpRequired(OpsGuardError):
    """Fresh identity proof is needed before the action may proceed."""

    recoverable = True

    def __init__(
        self,
        message: str = "Enhanced Security Required",
        permissions: Optional[Iterable[str]] = None,
        **kwargs,
    ):
        kwargs.setdefault("code", "step_up_required")
        super().__init__(message, **kwargs)
        self.permissions = list(permissions or [])


class StepUpFailedError(OpsGuardError):
    """The challenge service rejected the submitted proof."""

    recoverable = True

    def __init__(self, message: str = "Authentication failed", **kwargs):
        kwargs.setdefault("code", "step_up_failed")
        super().__init__(message, **kwargs)


class NoPendingChallengeError(OpsGuardError):
    """There is no open step-up challenge to resolve."""

    def __init__(self, message: str = "No step-up challenge is pending", **kwargs):
        kwargs.setdefault("code", "no_pending_challenge")
        super().__init__(message, **kwargs)


# =============================================================================
# AUDIT ERRORS
# =============================================================================


class AuditWriteError(OpsGuardError):
    """The audit sink failed to accept an entry."""

    recoverable = True

    def __init__(self, message: str, action: Optional[str] = None, **kwargs):
        kwargs.setdefault("code", "audit_write_failed")
        super().__init__(message, **kwargs)
        self.action = action
