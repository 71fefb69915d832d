"""Lore: persistent project knowledge for coding conversations.

Extracts decisions, patterns, tasks and insights from conversation
transcripts, scores heuristic finds against golden examples, and makes
everything retrievable by semantic similarity across sessions.

Public API:
    - Decision, Pattern, Task, Insight, KnowledgeType: Knowledge records
    - SessionMetadata, ProcessedSession, ProjectIndex, EmbeddingEntry: Containers
    - LoreConfig, load_config, save_config: Configuration
    - identify_project, get_project_hash: Project identity
    - parse_segments, split_sentences: Structural text parsing
    - MarkerExtractor, HeuristicExtractor, Candidate: Candidate extraction
    - QualityScorer, QualityScore: Golden-example quality scoring
    - detect_topic, generate_pattern_name: Topic / name classification
    - KnowledgeExtractor, extract_knowledge: Extraction pipeline
    - merge_session, novel_records: Merge and dedup rules
    - EmbeddingEngine, get_embedding_engine, cosine_similarity: Embeddings
    - VectorStore, VectorHit: Vector storage and search
    - RecordStore, PendingChanges: JSON record store
    - SessionCapture, CaptureResult: Capture orchestration
    - KnowledgeSearch, SearchResult: Hydrated semantic search
    - parse_transcript, ParsedTranscript: Transcript parsing
    - LoreError and subclasses: Errors callers act on
"""

__version__ = "0.1.0"

from lore.capture import CaptureResult, SessionCapture
from lore.classifier import detect_topic, generate_pattern_name
from lore.config import LoreConfig, load_config, save_config
from lore.embeddings import EMBEDDING_DIMENSION, EmbeddingEngine, cosine_similarity, get_embedding_engine
from lore.errors import (
    EmbeddingUnavailableError,
    LockTimeoutError,
    LoreError,
    RecordNotFoundError,
    RecordValidationError,
)
from lore.extractors import ExtractedKnowledge, KnowledgeExtractor, extract_knowledge
from lore.heuristics import HeuristicExtractor
from lore.markers import Candidate, MarkerExtractor
from lore.merge import merge_session, novel_records
from lore.models import (
    Decision,
    EmbeddingEntry,
    EntryType,
    Insight,
    KnowledgeSet,
    KnowledgeType,
    Pattern,
    ProcessedSession,
    ProjectIndex,
    SessionMetadata,
    Task,
    TaskPriority,
    TaskStatus,
)
from lore.parser import parse_segments, split_sentences
from lore.project import get_project_hash, identify_project
from lore.scorer import QualityScore, QualityScorer
from lore.search import KnowledgeSearch, SearchResult
from lore.store import PendingChanges, RecordStore
from lore.transcript import ParsedTranscript, parse_transcript
from lore.vec import VectorHit, VectorStore

__all__ = [
    "CaptureResult",
    "Candidate",
    "Decision",
    "EMBEDDING_DIMENSION",
    "EmbeddingEngine",
    "EmbeddingEntry",
    "EmbeddingUnavailableError",
    "EntryType",
    "ExtractedKnowledge",
    "HeuristicExtractor",
    "Insight",
    "KnowledgeExtractor",
    "KnowledgeSearch",
    "KnowledgeSet",
    "KnowledgeType",
    "LockTimeoutError",
    "LoreConfig",
    "LoreError",
    "MarkerExtractor",
    "ParsedTranscript",
    "Pattern",
    "PendingChanges",
    "ProcessedSession",
    "ProjectIndex",
    "QualityScore",
    "QualityScorer",
    "RecordNotFoundError",
    "RecordStore",
    "RecordValidationError",
    "SearchResult",
    "SessionCapture",
    "SessionMetadata",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "VectorHit",
    "VectorStore",
    "cosine_similarity",
    "detect_topic",
    "extract_knowledge",
    "generate_pattern_name",
    "get_embedding_engine",
    "get_project_hash",
    "identify_project",
    "load_config",
    "merge_session",
    "novel_records",
    "parse_segments",
    "parse_transcript",
    "save_config",
    "split_sentences",
]
