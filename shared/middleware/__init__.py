from shared.middleware.request_id import request_id_middleware
from shared.middleware.error_handler import build_error_envelope_middleware, error_envelope

__all__ = ["request_id_middleware", "build_error_envelope_middleware", "error_envelope"]
