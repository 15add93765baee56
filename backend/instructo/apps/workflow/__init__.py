from .engine import apply_transition, compare_and_set_status, ensure_transition
from .registry import WORKFLOWS

__all__ = ["WORKFLOWS", "apply_transition", "compare_and_set_status", "ensure_transition"]
