"""
api/routes/v1/password.py -- Password reset endpoints (all public).

Routes:
  POST  /api/v1/password/password-reset?email=...            -- request a reset email
  GET   /api/v1/password/validate-password-reset             -- is (email, token) usable?
  GET   /api/v1/password/check-password-reset-expire         -- is (email, token) expired?
  PATCH /api/v1/password/password                            -- set a new password

POST /password-reset never fails for an unknown email: it answers 200 with
the same message body and stores and sends nothing. 201 means a reset email
was handed to the mailer.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import EmailStr

from api.limiter import limiter, password_reset_limit
from api.models import ExpiryResponse, MessageResponse, PasswordChangeRequest, ValidityResponse
from auth.passwords import RESET_SKIPPED, PasswordResetManager

router = APIRouter()

_SENT_MESSAGE = "If the email is registered, a password reset link has been sent."


@limiter.limit(password_reset_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/password/password-reset", response_model=MessageResponse)
def request_password_reset(request: Request, email: EmailStr = Query(...)) -> JSONResponse:
    resets: PasswordResetManager = request.app.state.password_resets
    outcome = resets.request_reset(email)
    status_code = 200 if outcome == RESET_SKIPPED else 201
    return JSONResponse(status_code=status_code, content=MessageResponse(message=_SENT_MESSAGE).model_dump())


@router.get("/password/validate-password-reset", response_model=ValidityResponse)
def validate_password_reset(
    request: Request,
    email: EmailStr = Query(...),
    token: str = Query(..., min_length=1),
) -> ValidityResponse:
    resets: PasswordResetManager = request.app.state.password_resets
    return ValidityResponse(valid=resets.validate(email, token))


@router.get("/password/check-password-reset-expire", response_model=ExpiryResponse)
def check_password_reset_expire(
    request: Request,
    email: EmailStr = Query(...),
    token: str = Query(..., min_length=1),
) -> ExpiryResponse:
    """Report expiry; an expired record is deleted as a side effect."""
    resets: PasswordResetManager = request.app.state.password_resets
    return ExpiryResponse(expired=resets.check_expired(email, token))


@router.patch("/password/password", response_model=MessageResponse)
def change_password(request: Request, body: PasswordChangeRequest) -> MessageResponse:
    """Consume a reset token and set the new password."""
    resets: PasswordResetManager = request.app.state.password_resets
    resets.complete_reset(body.email, body.token, body.password)
    return MessageResponse(message="Password updated.")
