from .completion_invoker import ResilientCompletionInvoker
from .config import GatewayConfig
from .contracts import CompletionAttempt, CompletionFailure, CompletionRequest, CompletionResult
from .provider import OpenAIChatProvider

__all__ = [
    "CompletionAttempt",
    "CompletionFailure",
    "CompletionRequest",
    "CompletionResult",
    "GatewayConfig",
    "OpenAIChatProvider",
    "ResilientCompletionInvoker",
]
