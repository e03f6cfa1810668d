"""
API Package
"""
from autorest.api import auto_rest

__all__ = ["auto_rest"]
