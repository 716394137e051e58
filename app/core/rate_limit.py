# app/core/rate_limit.py
"""
FastAPI dependencies that put routes behind the rate admission gate.

Usage:

    @router.post("", dependencies=[Depends(rate_limit("orders"))])
    def create_order(...):
        ...

The client identity is the remote address, extended with the token
subject when a valid bearer token is present, so users behind one NAT do
not share a bucket.
"""

from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials

from app.core.auth import bearer_scheme, require_auth, try_decode_subject
from app.core.errors import RateLimitExceeded
from app.models.user import User
from app.services.admission_service import Decision, RateAdmissionGate


def get_admission_gate(request: Request) -> RateAdmissionGate:
    """Gate built at startup (see main.lifespan)."""
    return request.app.state.admission_gate


def client_identity(request: Request, token: str | None) -> str:
    host = request.client.host if request.client else "unknown"
    subject = try_decode_subject(token)
    return f"{host}:{subject}" if subject else host


def _enforce(
    request: Request,
    response: Response,
    gate: RateAdmissionGate,
    decision: Decision,
    policy_name: str,
) -> None:
    headers = decision.headers()
    # Error handlers copy these onto error responses too
    request.state.rate_limit_headers = headers
    for name, value in headers.items():
        response.headers[name] = value
    if not decision.allowed:
        raise RateLimitExceeded(
            f"Too many requests for policy '{policy_name}', try again later",
            retry_after=decision.retry_after(gate.clock()),
        )


def rate_limit(policy_name: str):
    """Dependency factory for a named policy."""

    def dependency(
        request: Request,
        response: Response,
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
        gate: RateAdmissionGate = Depends(get_admission_gate),
    ) -> Decision:
        token = credentials.credentials if credentials else None
        decision = gate.admit(policy_name, client_identity(request, token))
        _enforce(request, response, gate, decision, policy_name)
        return decision

    return dependency


def tiered_rate_limit(
    request: Request,
    response: Response,
    user: User = Depends(require_auth),
    gate: RateAdmissionGate = Depends(get_admission_gate),
) -> Decision:
    """Policy chosen by the caller's account tier (tier_basic, tier_premium, ...)."""
    policy_name = f"tier_{user.tier or 'basic'}"
    if policy_name not in gate.policies:
        policy_name = "tier_basic"
    host = request.client.host if request.client else "unknown"
    decision = gate.admit(policy_name, f"{host}:{user.id}")
    _enforce(request, response, gate, decision, policy_name)
    return decision
