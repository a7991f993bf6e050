from shared.models.response import ApiResponse

__all__ = ["ApiResponse"]
