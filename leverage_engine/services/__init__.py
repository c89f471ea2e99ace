"""Service layer — orchestration."""
from .leverage_service import LeverageService

__all__ = ["LeverageService"]
