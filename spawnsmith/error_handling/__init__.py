from .error_handler import ErrorHandler

__all__ = ["ErrorHandler"]
