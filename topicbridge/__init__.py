from .app import run_bridge, start_bridge
from .config import BridgeConfig
from .correlation import ReplyCorrelationCache, StatusRef
from .registry import TopicRegistry
from .router import Bridge
from .sender import RetryingSender
from .source import SourceClient
from .store import BridgeDB
from .transcoder import MediaTranscoder

__all__ = [
    "Bridge",
    "BridgeConfig",
    "BridgeDB",
    "MediaTranscoder",
    "ReplyCorrelationCache",
    "RetryingSender",
    "SourceClient",
    "StatusRef",
    "TopicRegistry",
    "run_bridge",
    "start_bridge",
]
