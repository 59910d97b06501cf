from .base import ModelClient, ModelRequest, ModelResponse

__all__ = ["ModelClient", "ModelRequest", "ModelResponse"]
