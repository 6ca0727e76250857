"""Risk-gated approval workflow for actions the agent wants to perform."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from codeloop.core.safety import assess_action_risk
from codeloop.core.types import ApprovalPolicy, ApprovalStatus, RiskLevel
from codeloop.log import get_logger

logger = get_logger(__name__)

APPROVAL_TIMEOUT = 60.0


@dataclass
class ApprovalRequest:
    action: str
    risk: RiskLevel
    details: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"approval_{uuid.uuid4().hex[:8]}")
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class ApprovalResult:
    approved: bool
    reason: Optional[str] = None
    auto_approved: bool = False


ApprovalNotifier = Callable[[ApprovalRequest], Awaitable[None]]


class ApprovalManager:
    """Turns a risk tier into a yes/no decision, waiting on a human when required.

    Requests live in memory only. A wait ends on ``approve``, ``reject`` or the
    timeout, which counts as a rejection.
    """

    def __init__(
        self,
        policy: ApprovalPolicy = ApprovalPolicy.ON_REQUEST,
        timeout: float = APPROVAL_TIMEOUT,
    ):
        self._policy = policy
        self._timeout = min(timeout, APPROVAL_TIMEOUT)
        self._pending: dict[str, ApprovalRequest] = {}
        self._waiters: dict[str, asyncio.Future[ApprovalResult]] = {}
        self._notifiers: list[ApprovalNotifier] = []

    @property
    def policy(self) -> ApprovalPolicy:
        return self._policy

    def on_request(self, notifier: ApprovalNotifier) -> None:
        """Register a callback invoked whenever a request starts waiting."""
        self._notifiers.append(notifier)

    def needs_approval(self, risk: RiskLevel) -> bool:
        match self._policy:
            case ApprovalPolicy.NEVER:
                return False
            case ApprovalPolicy.ALWAYS:
                return True
            case ApprovalPolicy.ON_REQUEST:
                return risk in (RiskLevel.MEDIUM, RiskLevel.HIGH)
        return risk == RiskLevel.HIGH

    def create_request(
        self,
        action: str,
        details: dict[str, Any] | None = None,
        risk: RiskLevel | None = None,
    ) -> ApprovalRequest:
        details = details or {}
        request = ApprovalRequest(
            action=action,
            risk=risk if risk is not None else assess_action_risk(action, details),
            details=details,
        )
        self._pending[request.id] = request
        return request

    async def request_approval(
        self, request: ApprovalRequest, timeout: float | None = None
    ) -> ApprovalResult:
        """Wait for a decision on ``request``; low risk short-circuits unless policy is ``always``."""
        if request.risk == RiskLevel.LOW and self._policy != ApprovalPolicy.ALWAYS:
            request.status = ApprovalStatus.APPROVED
            self._pending.pop(request.id, None)
            logger.info("approval_auto_approved", request_id=request.id, action=request.action)
            return ApprovalResult(approved=True, auto_approved=True)

        wait_for = min(timeout if timeout is not None else self._timeout, APPROVAL_TIMEOUT)
        future: asyncio.Future[ApprovalResult] = asyncio.get_running_loop().create_future()
        self._pending[request.id] = request
        self._waiters[request.id] = future
        logger.info(
            "approval_waiting",
            request_id=request.id,
            action=request.action,
            risk=request.risk.value,
            timeout=wait_for,
        )

        for notifier in self._notifiers:
            try:
                await notifier(request)
            except Exception as e:
                logger.error("approval_notifier_error", request_id=request.id, error=str(e))

        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=wait_for)
        except asyncio.TimeoutError:
            request.status = ApprovalStatus.REJECTED
            logger.warning("approval_timeout", request_id=request.id)
            return ApprovalResult(approved=False, reason="timeout")
        finally:
            self._waiters.pop(request.id, None)
            self._pending.pop(request.id, None)

    def approve(self, request_id: str) -> bool:
        return self._resolve(request_id, ApprovalResult(approved=True))

    def reject(self, request_id: str, reason: str | None = None) -> bool:
        return self._resolve(request_id, ApprovalResult(approved=False, reason=reason or "User rejected"))

    def _resolve(self, request_id: str, result: ApprovalResult) -> bool:
        request = self._pending.get(request_id)
        future = self._waiters.get(request_id)
        if request is None or future is None or future.done():
            return False

        request.status = ApprovalStatus.APPROVED if result.approved else ApprovalStatus.REJECTED
        future.set_result(result)
        logger.info("approval_resolved", request_id=request_id, approved=result.approved)
        return True

    def get_pending(self) -> list[ApprovalRequest]:
        return [r for r in self._pending.values() if r.status == ApprovalStatus.PENDING]

    @staticmethod
    def format_request(request: ApprovalRequest) -> str:
        lines = [
            "Approval required",
            "",
            f"Action: {request.action}",
            f"Risk: {request.risk.value.upper()}",
        ]
        if command := request.details.get("command"):
            lines.append(f"Command: {command}")
        if path := request.details.get("path"):
            lines.append(f"Path: {path}")
        if preview := request.details.get("preview"):
            lines.extend(["", "Preview:", str(preview)])
        lines.extend(["", f"Reply with /approve {request.id} or /reject {request.id}"])
        return "\n".join(lines)
