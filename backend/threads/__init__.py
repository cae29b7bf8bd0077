"""
Semantic threading for room messages.

Thread = Messages + Main branch + Sub-branches + Cached analysis

Classes:
- ThreadManager: In-memory store and mutation primitives
- ThreadLinker: Routes incoming messages into threads and branches
- ThreadSummarizer: Key points, action items, summaries, similarity
- ThreadSync: Mirror threads into the protocol's native threading

ThreadService (threads.service) wires these to storage and is the entry
point used by the API.
"""

from .models import (
    Thread,
    ThreadMessage,
    ThreadBranch,
    Sender,
    ContextualObject,
    ContextObjectType,
    MessageSource,
    LinkResult,
    LinkingConfig,
)
from .manager import ThreadManager
from .linker import ThreadLinker
from .summarizer import ThreadSummarizer
from .sync import ThreadSync, ThreadMetadata, METADATA_EVENT_TYPE
from . import adapters

__all__ = [
    # Models
    'Thread',
    'ThreadMessage',
    'ThreadBranch',
    'Sender',
    'ContextualObject',
    'ContextObjectType',
    'MessageSource',
    'LinkResult',
    'LinkingConfig',
    # Components
    'ThreadManager',
    'ThreadLinker',
    'ThreadSummarizer',
    'ThreadSync',
    'ThreadMetadata',
    'METADATA_EVENT_TYPE',
    'adapters',
]
