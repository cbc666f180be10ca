# Shared utilities package
from .config import Settings
from .dynamo import find, insert, patch
from .errors import APIError, NotFoundError
from .response_utils import error_response, success_response

__all__ = [
    "Settings",
    "find",
    "insert",
    "patch",
    "error_response",
    "success_response",
    "APIError",
    "NotFoundError",
]
