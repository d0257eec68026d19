from .orchestrator import DispatchOrchestrator, MessageOutcome
from .retry import RetryPolicy

__all__ = ["DispatchOrchestrator", "MessageOutcome", "RetryPolicy"]
