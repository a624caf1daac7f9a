from .async_utils import cancel_task, guarded_call
from .logging import log_event

__all__ = [
    "cancel_task",
    "guarded_call",
    "log_event",
]
