"""pipeline-xray: step tracking and asynchronous reasoning for pipelines."""

from .client import XRayHttpClient
from .config import XRayConfig, load_config
from .contracts import Execution, Step
from .persistence import get_repository
from .queue import ReasoningQueue
from .reasoning import ExplanationChain
from .service import ReasoningService, build_service
from .tracker import ExecutionTracker

__version__ = "0.1.0"
__all__ = [
    "Execution",
    "ExecutionTracker",
    "ExplanationChain",
    "ReasoningQueue",
    "ReasoningService",
    "Step",
    "XRayConfig",
    "XRayHttpClient",
    "build_service",
    "get_repository",
    "load_config",
]
