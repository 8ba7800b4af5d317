"""
OPSGUARD - Sensitive Action Guard

Runs one sensitive action end to end:

    1. resolve the permissions these call arguments require
    2. deny (and audit) when any of them is not held
    3. decide whether step-up is needed
    4. if so, park the call behind a step-up challenge
    5. otherwise run the action now
    6. audit the outcome of whichever path ran the action

Challenge lifecycle:

    IDLE -> PENDING -> RESOLVED | ABANDONED

Only one challenge is tracked per guard. Calling ``execute`` while one is
pending supersedes it; the superseded challenge resolves as ABANDONED.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Union

from opsguard.access.audit import AuditLogger, AuditOutcome
from opsguard.access.context import AuthorizationContext
from opsguard.config import settings
from opsguard.exceptions import (
    NoPendingChallengeError,
    OpsGuardError,
    PermissionDeniedError,
    StepUpFailedError,
)
from opsguard.services.schemas import ReauthResult


logger = logging.getLogger(__name__)


DEFAULT_STEP_UP_TITLE = "Enhanced Security Required"

PermissionSource = Union[None, str, List[str], Tuple[str, ...], Callable[..., Any]]


class StepUpService(Protocol):
    """Verifies a re-entered password and issues a step-up token."""

    async def begin_reauth(self, password: str) -> Any:
        ...


# ============================================================
# Results
# ============================================================


class GuardStatus(str, Enum):
    """What ``execute`` did with the call."""

    COMPLETED = "completed"
    STEP_UP_REQUIRED = "step_up_required"


class ChallengeState(str, Enum):
    """Step-up challenge lifecycle."""

    IDLE = "idle"
    PENDING = "pending"
    RESOLVED = "resolved"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class ChallengeResolution:
    """Terminal state of a challenge and, when the action ran, its result or error."""

    state: ChallengeState
    result: Any = None
    error: Optional[BaseException] = None
    reason: Optional[str] = None


class PendingChallenge:
    """A parked call waiting on step-up. ``wait()`` yields its resolution."""

    def __init__(
        self,
        title: str,
        permissions: List[str],
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
    ):
        self.title = title
        self.permissions = permissions
        self.args = args
        self.kwargs = kwargs
        self.opened_at = datetime.now(timezone.utc)
        self.attempts = 0
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def state(self) -> ChallengeState:
        if not self._future.done():
            return ChallengeState.PENDING
        return self._future.result().state

    @property
    def done(self) -> bool:
        return self._future.done()

    async def wait(self) -> ChallengeResolution:
        return await asyncio.shield(self._future)

    def resolution(self) -> Optional[ChallengeResolution]:
        return self._future.result() if self._future.done() else None

    def _resolve(self, resolution: ChallengeResolution) -> None:
        if not self._future.done():
            self._future.set_result(resolution)


@dataclass(frozen=True)
class GuardResult:
    """Result of ``SensitiveActionGuard.execute``."""

    status: GuardStatus
    value: Any = None
    permissions: Tuple[str, ...] = ()
    challenge: Optional[PendingChallenge] = field(default=None, compare=False)

    @property
    def completed(self) -> bool:
        return self.status is GuardStatus.COMPLETED

    @property
    def step_up_required(self) -> bool:
        return self.status is GuardStatus.STEP_UP_REQUIRED


def _normalize_permissions(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(p) for p in value]


# ============================================================
# Guard
# ============================================================


class SensitiveActionGuard:
    """
    Permission check, step-up, execution and audit for one action.

    Usage:
        guard = SensitiveActionGuard(
            context,
            action=refunds.process,
            action_name="process_refund",
            get_required_permissions=lambda case: ["refunds.process"],
            build_audit_context=lambda case: {"refund_case_id": case.id},
            audit_logger=AuditLogger(sink=backend),
            step_up_service=backend,
        )
        result = await guard.execute(case)
        if result.step_up_required:
            await guard.complete_step_up(password)
    """

    def __init__(
        self,
        context: AuthorizationContext,
        action: Callable[..., Any],
        action_name: str,
        get_required_permissions: PermissionSource = None,
        build_audit_context: Optional[Callable[..., Optional[Dict[str, Any]]]] = None,
        audit_logger: Optional[AuditLogger] = None,
        step_up_service: Optional[StepUpService] = None,
        step_up_title: Optional[str] = None,
        elevation_duration_minutes: Optional[float] = None,
    ):
        self.context = context
        self.action = action
        self.action_name = action_name
        self.get_required_permissions = get_required_permissions
        self.build_audit_context = build_audit_context
        self.audit_logger = audit_logger or AuditLogger()
        self.step_up_service = step_up_service
        self.step_up_title = step_up_title
        self.elevation_duration_minutes = elevation_duration_minutes

        self._pending: Optional[PendingChallenge] = None
        self._executing = 0

    # ==================== State ====================

    @property
    def title(self) -> str:
        """Title shown on the step-up prompt."""
        if self.step_up_title:
            return self.step_up_title
        if self.action_name:
            return f"Confirm {self.action_name.replace('_', ' ').replace('-', ' ')}"
        return DEFAULT_STEP_UP_TITLE

    @property
    def pending(self) -> Optional[PendingChallenge]:
        return self._pending

    @property
    def state(self) -> ChallengeState:
        return ChallengeState.PENDING if self._pending else ChallengeState.IDLE

    @property
    def is_executing(self) -> bool:
        return self._executing > 0

    def resolve_permissions(self, *args, **kwargs) -> List[str]:
        """Permissions required for this specific call."""
        source = self.get_required_permissions
        if callable(source):
            source = source(*args, **kwargs)
        return _normalize_permissions(source)

    # ==================== Execute ====================

    async def execute(self, *args, **kwargs) -> GuardResult:
        """
        Attempt the action with these arguments.

        Returns:
            COMPLETED with the action's value, or STEP_UP_REQUIRED with the
            parked challenge

        Raises:
            PermissionDeniedError: A required permission is not held
            Exception: Whatever the wrapped action raised
        """
        permissions = self.resolve_permissions(*args, **kwargs)

        if permissions and not self.context.is_authenticated:
            missing = list(permissions)
        else:
            missing = self.context.missing_permissions(permissions)

        if missing:
            logger.warning(
                "Sensitive action denied",
                extra={
                    "action": self.action_name,
                    "actor_id": self.context.actor_id,
                    "missing_permissions": missing,
                },
            )
            await self._audit(
                AuditOutcome.DENIED, args, kwargs, permissions,
                error="permission_denied",
                extra={"missing_permissions": missing},
            )
            raise PermissionDeniedError(missing, action_name=self.action_name)

        if self.context.needs_step_up(permissions):
            challenge = await self._open_challenge(permissions, args, kwargs)
            return GuardResult(
                status=GuardStatus.STEP_UP_REQUIRED,
                permissions=tuple(permissions),
                challenge=challenge,
            )

        value = await self._run(args, kwargs, permissions)
        return GuardResult(status=GuardStatus.COMPLETED, value=value, permissions=tuple(permissions))

    __call__ = execute

    # ==================== Step-up ====================

    async def complete_step_up(self, password: str) -> Any:
        """
        Prove identity for the pending challenge and run the parked call.

        A rejected proof leaves the challenge pending so the user can retry.

        Returns:
            The wrapped action's value

        Raises:
            NoPendingChallengeError: Nothing is waiting on step-up, or the
                challenge was superseded while the proof was checked; the
                elevation is still granted
            StepUpFailedError: The proof was rejected
            Exception: Whatever the wrapped action raised
        """
        challenge = self._pending
        if challenge is None:
            raise NoPendingChallengeError()

        if not password or not password.strip():
            raise StepUpFailedError("Password is required")

        if self.step_up_service is None:
            raise OpsGuardError("No step-up service configured", code="step_up_unavailable")

        challenge.attempts += 1
        try:
            raw = await self.step_up_service.begin_reauth(password)
        except Exception as e:
            logger.warning(
                "Step-up challenge errored",
                extra={"action": self.action_name, "error": str(e)},
            )
            raise StepUpFailedError(str(e) or "Authentication failed") from e

        outcome = ReauthResult.from_response(raw)
        if not outcome.success:
            logger.info(
                "Step-up challenge rejected",
                extra={"action": self.action_name, "attempts": challenge.attempts},
            )
            raise StepUpFailedError(outcome.error or "Authentication failed")

        self.context.activate_elevation(
            outcome.token or "",
            duration_minutes=self.elevation_duration_minutes,
            reason=self.action_name,
        )

        # A newer call may have superseded this challenge while we awaited;
        # the grant stands but the parked call is gone
        if self._pending is not challenge:
            raise NoPendingChallengeError("Step-up challenge was superseded")
        self._pending = None

        try:
            value = await self._run(challenge.args, challenge.kwargs, challenge.permissions)
        except Exception as e:
            challenge._resolve(ChallengeResolution(ChallengeState.RESOLVED, error=e))
            raise

        challenge._resolve(ChallengeResolution(ChallengeState.RESOLVED, result=value))
        return value

    async def abandon_step_up(self, reason: str = "dismissed") -> ChallengeResolution:
        """Dismiss the pending challenge without running the parked call."""
        challenge = self._pending
        if challenge is None:
            raise NoPendingChallengeError()
        self._pending = None
        return await self._abandon(challenge, reason)

    async def _open_challenge(
        self,
        permissions: List[str],
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
    ) -> PendingChallenge:
        previous = self._pending
        challenge = PendingChallenge(self.title, permissions, args, kwargs)
        self._pending = challenge

        logger.info(
            "Step-up required",
            extra={"action": self.action_name, "permissions": permissions},
        )

        if previous is not None:
            await self._abandon(previous, "superseded")
        return challenge

    async def _abandon(self, challenge: PendingChallenge, reason: str) -> ChallengeResolution:
        resolution = ChallengeResolution(ChallengeState.ABANDONED, reason=reason)
        challenge._resolve(resolution)

        logger.info(
            "Step-up challenge abandoned",
            extra={"action": self.action_name, "reason": reason},
        )
        if settings.AUDIT_ABANDONED_CHALLENGES:
            await self._audit(
                AuditOutcome.ABANDONED, challenge.args, challenge.kwargs, challenge.permissions,
                extra={"reason": reason},
            )
        return resolution

    # ==================== Execution & Audit ====================

    async def _run(
        self,
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
        permissions: List[str],
    ) -> Any:
        self._executing += 1
        try:
            result = self.action(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            await self._audit(AuditOutcome.FAILED, args, kwargs, permissions, error=str(e))
            raise
        finally:
            self._executing -= 1

        await self._audit(AuditOutcome.SUCCESS, args, kwargs, permissions)
        return result

    async def _audit(
        self,
        status: AuditOutcome,
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
        permissions: List[str],
        error: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        metadata: Dict[str, Any] = {}
        if self.build_audit_context is not None:
            try:
                metadata.update(self.build_audit_context(*args, **kwargs) or {})
            except Exception as e:
                logger.warning(
                    "Failed to build audit context",
                    extra={"action": self.action_name, "error": str(e)},
                )
        metadata.update(extra or {})
        metadata["permissions"] = list(permissions)
        metadata["error"] = error

        await self.audit_logger.record(
            action=self.action_name,
            status=status,
            actor_id=self.context.actor_id,
            actor_email=self.context.actor_email,
            metadata=metadata,
        )
