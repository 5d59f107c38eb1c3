"""Domain error taxonomy.

Every rejection carries a stable ``code`` so UI layers can localize and branch
on it. Services raise these; the FastAPI exception handler in ``app.main``
renders them as ``{"success": false, "error": code, ...}``.
"""

from fastapi import status


class ShopError(Exception):
    """Base class for all dispatch-core errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "error"

    def __init__(self, code: str | None = None, detail: str | None = None) -> None:
        self.code = code or self.default_code
        self.detail = detail
        super().__init__(detail or self.code)

    def to_payload(self) -> dict:
        payload: dict = {"success": False, "error": self.code}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class ValidationFailed(ShopError):
    """Malformed input, rejected before any state access."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_failed"


class ForbiddenError(ShopError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "forbidden"


class NotFoundError(ShopError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class CapabilityViolation(ShopError):
    """Hard policy failure: the machine is not configured for the request."""

    status_code = status.HTTP_403_FORBIDDEN
    default_code = "capability_violation"

    def __init__(self, reason: str, detail: str | None = None, violation: dict | None = None) -> None:
        super().__init__("capability_violation", detail)
        self.reason = reason
        self.violation = violation or {}

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["reason"] = self.reason
        if self.violation:
            payload["violation"] = self.violation
        return payload


class ConflictError(ShopError):
    """State changed since the request was formed, or a uniqueness clash."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class MachineBusy(ConflictError):
    default_code = "machine_busy"


class TransitionBlocked(ShopError):
    """The state graph does not permit the requested transition."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "transition_not_permitted"

    def __init__(self, code: str, from_state: str, to_state: str, graph: str) -> None:
        super().__init__(code, f"{graph}: {from_state} -> {to_state}")
        self.from_state = from_state
        self.to_state = to_state
        self.graph = graph


class GateRequired(ShopError):
    """Structurally valid transition waiting on an external precondition."""

    status_code = status.HTTP_428_PRECONDITION_REQUIRED
    default_code = "gate_required"

    def __init__(self, missing: list[str], detail: str | None = None) -> None:
        super().__init__("gate_required", detail)
        self.missing = list(missing)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["missing"] = self.missing
        return payload
