"""Ex Remover - remove one person from a batch of photos using vision APIs."""

__version__ = "0.1.0"

from ex_remover.credits import CreditLedger, JsonFileCreditStore, MemoryCreditStore
from ex_remover.errors import AdapterError, InsufficientCredits, is_billing_error
from ex_remover.orchestrator import BatchOrchestrator
from ex_remover.provider import OpenAIVisionEditAdapter, VisionEditAdapter
from ex_remover.records import ImageRecord, ImageStatus, ImageStore, Point, TargetDescriptor
from ex_remover.reverify import ReverifyCoordinator

__all__ = [
    "AdapterError",
    "BatchOrchestrator",
    "CreditLedger",
    "ImageRecord",
    "ImageStatus",
    "ImageStore",
    "InsufficientCredits",
    "JsonFileCreditStore",
    "MemoryCreditStore",
    "OpenAIVisionEditAdapter",
    "Point",
    "ReverifyCoordinator",
    "TargetDescriptor",
    "VisionEditAdapter",
    "is_billing_error",
]
