"""
Local package for localreg.

This package holds the registry configuration accessor, the registry server
supervisor and the coordinator that ties them together.
"""

from .coordinator import RegistrySwap

__all__ = ["RegistrySwap"]
