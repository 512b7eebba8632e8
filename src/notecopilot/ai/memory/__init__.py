"""Document records, embeddings, retrieval and conversational memory."""

from .buffers import ConversationMemory, ConversationMessage
from .document_cache import CacheStats, DocumentCache, split_passages
from .embeddings import EmbeddingProvider, LocalEmbeddingProvider, OpenAIEmbeddingProvider
from .records import DocumentRecord, Passage, content_hash
from .retrieval import RetrievalIndex, RetrievalMatch
from .store import DocumentRecordStore, InMemoryDocumentStore, SQLiteDocumentStore

__all__ = [
    "CacheStats",
    "ConversationMemory",
    "ConversationMessage",
    "DocumentCache",
    "DocumentRecord",
    "DocumentRecordStore",
    "EmbeddingProvider",
    "InMemoryDocumentStore",
    "LocalEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "Passage",
    "RetrievalIndex",
    "RetrievalMatch",
    "SQLiteDocumentStore",
    "content_hash",
    "split_passages",
]
