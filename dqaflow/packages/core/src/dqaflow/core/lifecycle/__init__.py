"""生命周期状态机 -- 纯函数，无副作用、无 I/O

每个子模块提供 explain / can_transition / check_transition / apply。
"""

from . import escalation, invoice, task
from .base import TransitionContext, TransitionExtra

__all__ = [
    "task",
    "escalation",
    "invoice",
    "TransitionContext",
    "TransitionExtra",
]
