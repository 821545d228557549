"""
core/errors.py
────────────────────────────────────────────────────────────────────────
Failure taxonomy shared by the normalizer, the cache and the controller.

    NetworkError         transport / HTTP failure, retry on user action
    NormalizationError   payload shape unusable, only that fetch is lost
    PlanValidationError  normalized plan breaks a structural rule
    SwapRejected         remote declined a swap, plan left unchanged
    CacheCorrupt         stored JSON unparseable, treated as cache-absent
    PermissionDenied     the client may not perform this action
"""
from __future__ import annotations


class MealPlanError(Exception):
    """Base class for every error raised by the engine."""


class NetworkError(MealPlanError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NormalizationError(MealPlanError):
    pass


class PlanValidationError(MealPlanError):
    pass


class SwapRejected(MealPlanError):
    pass


class CacheCorrupt(MealPlanError):
    pass


class PermissionDenied(MealPlanError):
    pass
