"""Domain exceptions and their HTTP mapping."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CourseworkError(Exception):
    """Base class for errors scoped to a single user action."""

    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_body(self) -> dict:
        return {"detail": self.detail}


class NotFound(CourseworkError):
    status_code = 404


class AccessDenied(CourseworkError):
    """Raised when the access policy rejects a user.

    A user who is not enrolled gets the same response as for missing
    content so the existence of the course's activities is not revealed.
    """

    def __init__(self, decision) -> None:
        from coursework.services.access import AccessDecision

        self.decision = decision
        if decision == AccessDecision.DENIED_NOT_ASSIGNED:
            self.status_code = 403
            detail = "Activity is not assigned to you"
        else:
            self.status_code = 404
            detail = "Not found or not accessible"
        super().__init__(detail)


class ValidationFailed(CourseworkError):
    """A single field failed a domain rule; rendered like a request validation error."""

    status_code = 422

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field

    def to_body(self) -> dict:
        return {
            "detail": [
                {"loc": ["body", self.field], "msg": self.detail, "type": "value_error"}
            ]
        }


class InvalidTransition(CourseworkError):
    status_code = 409

    def __init__(self, current: str, target: str, reason: str | None = None) -> None:
        detail = reason or f"Cannot move attempt from {current} to {target}"
        super().__init__(detail)
        self.current = current
        self.target = target

    def to_body(self) -> dict:
        return {"detail": self.detail, "status": self.current}


class PersistenceError(CourseworkError):
    """A write did not reach the store; `state` is what the client should show instead."""

    status_code = 503

    def __init__(self, detail: str, state: dict | None = None) -> None:
        super().__init__(detail)
        self.state = state

    def to_body(self) -> dict:
        body = {"detail": self.detail, "retryable": True}
        if self.state is not None:
            body["state"] = self.state
        return body


class GenerationError(CourseworkError):
    """Generative gateway failure; always recoverable by retrying."""

    status_code = 502

    def __init__(self, detail: str, *, timeout: bool = False) -> None:
        super().__init__(detail)
        self.timeout = timeout
        self.retryable = True
        if timeout:
            self.status_code = 504

    def to_body(self) -> dict:
        return {"detail": self.detail, "retryable": self.retryable}


async def coursework_error_handler(request: Request, exc: CourseworkError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    else:
        logger.info("%s %s rejected (%d): %s",
                    request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CourseworkError, coursework_error_handler)
