"""
Runtime configuration from environment variables (and an optional .env file).
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Fingerprint table persistence
FINGERPRINT_STORE = os.getenv("FINGERPRINT_STORE", "sqlite")  # sqlite|memory
FINGERPRINT_DB_PATH = os.getenv("FINGERPRINT_DB_PATH", "./data/fingerprints.db")

# Debug flag
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Vector index and embeddings
VECTOR_PROVIDER = os.getenv("VECTOR_PROVIDER", "memory")  # memory|faiss
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "hash")  # hash|sentence|ollama
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "all-MiniLM-L6-v2")
EMBED_DIMENSION = int(os.getenv("EMBED_DIMENSION", "384"))
MAX_EMBED_CHARS = int(os.getenv("MAX_EMBED_CHARS", "8000"))

# Inference service
INFERENCE_PROVIDER = os.getenv("INFERENCE_PROVIDER", "ollama")  # ollama|mock
OLLAMA_HOST = os.getenv("OLLAMA_HOST")  # None uses the library default
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.2:3b")
OLLAMA_EMBED_MODEL = os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text")

# Sync and retrieval
VECTORIZE_BATCH_SIZE = int(os.getenv("VECTORIZE_BATCH_SIZE", "50"))
MAX_SEARCH_RESULTS = int(os.getenv("MAX_SEARCH_RESULTS", "10"))
SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.3"))
USER_BOOST = float(os.getenv("USER_BOOST", "0.2"))

# Request surface limits
MAX_QUERY_LENGTH = int(os.getenv("MAX_QUERY_LENGTH", "1000"))
MAX_QUERY_LIMIT = int(os.getenv("MAX_QUERY_LIMIT", "50"))
MAX_UPDATE_RECORDS = int(os.getenv("MAX_UPDATE_RECORDS", "1000"))
MAX_SYNC_RECORDS = int(os.getenv("MAX_SYNC_RECORDS", "10000"))

# Version string
VERSION = "0.1.0"


def get_embedding_provider():
    """Get configured embedding provider implementation."""
    if EMBED_PROVIDER == "sentence":
        from ..vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(EMBED_MODEL_NAME)
    elif EMBED_PROVIDER == "ollama":
        from ..vector.embeddings import InferenceEmbedding
        return InferenceEmbedding(get_inference_client())
    else:
        from ..vector.embeddings import DeterministicHashEmbedding
        return DeterministicHashEmbedding(EMBED_DIMENSION)


def get_inference_client():
    """Get configured inference client implementation."""
    if INFERENCE_PROVIDER == "mock":
        from ..agents.mock_inference import MockInferenceClient
        return MockInferenceClient(EMBED_DIMENSION)

    from ..agents.inference import OllamaInferenceClient
    return OllamaInferenceClient(OLLAMA_MODEL, OLLAMA_EMBED_MODEL, host=OLLAMA_HOST)


def get_embedding_emitter(inference=None):
    """Build an EmbeddingEmitter over the configured provider."""
    from ..vector.embeddings import EmbeddingEmitter
    inference = inference or get_inference_client()
    return EmbeddingEmitter(get_embedding_provider(), inference=inference, max_chars=MAX_EMBED_CHARS)


def get_vector_index(emitter):
    """Get configured vector index implementation."""
    if VECTOR_PROVIDER == "faiss":
        from ..vector.faiss_store import FaissVectorIndex
        return FaissVectorIndex(emitter, dimension=emitter.get_dimension())

    from ..vector.index import SimpleInMemoryVectorIndex
    return SimpleInMemoryVectorIndex(emitter)


def get_fingerprint_table():
    """Get configured fingerprint table implementation."""
    from .fingerprints import InMemoryFingerprintTable, SQLiteFingerprintTable

    if FINGERPRINT_STORE == "memory":
        return InMemoryFingerprintTable()
    return SQLiteFingerprintTable(FINGERPRINT_DB_PATH)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the fingerprint database directory exists."""
    Path(db_path or FINGERPRINT_DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if VECTOR_PROVIDER not in ["memory", "faiss"]:
        issues.append(f"Invalid VECTOR_PROVIDER: {VECTOR_PROVIDER}")

    if EMBED_PROVIDER not in ["hash", "sentence", "ollama"]:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if INFERENCE_PROVIDER not in ["ollama", "mock"]:
        issues.append(f"Invalid INFERENCE_PROVIDER: {INFERENCE_PROVIDER}")

    if FINGERPRINT_STORE not in ["sqlite", "memory"]:
        issues.append(f"Invalid FINGERPRINT_STORE: {FINGERPRINT_STORE}")

    if VECTORIZE_BATCH_SIZE < 1:
        issues.append("VECTORIZE_BATCH_SIZE must be >= 1")

    if not 0.0 <= SIMILARITY_THRESHOLD <= 1.0:
        issues.append("SIMILARITY_THRESHOLD must be within [0, 1]")

    if USER_BOOST < 0:
        issues.append("USER_BOOST must be >= 0")

    return issues
