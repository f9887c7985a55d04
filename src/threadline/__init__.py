from threadline.errors import ChatError
from threadline.orchestrator import ConversationOrchestrator

__version__ = "0.1.0"

__all__ = ["ChatError", "ConversationOrchestrator", "__version__"]
