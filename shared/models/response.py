from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """
    Standard response envelope shared by every endpoint.

    ``data`` carries the payload on success; ``warning`` flags a degraded
    but successful outcome (e.g. the OTP email could not be delivered).
    Failures use the same keys plus ``errors`` / ``error``, built by the
    exception handlers.
    """

    model_config = ConfigDict(extra="forbid")

    success: bool = True
    message: str | None = None
    data: T | None = None
    warning: str | None = None
