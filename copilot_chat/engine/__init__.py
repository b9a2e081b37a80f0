"""Turn-level engine (request pipeline and response reconciliation)."""

from .pipeline import ChatController, TurnResult
from .reconciler import ResponseReconciler

__all__ = ["ChatController", "TurnResult", "ResponseReconciler"]
