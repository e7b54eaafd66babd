from .base import BaseProcessor

__all__ = ["BaseProcessor"]
