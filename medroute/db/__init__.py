"""
MedRoute Database Module

Database components:
- PostgreSQL with pgvector integration
- SQLAlchemy models
- Connection management
- DocumentStore / VectorStore implementations (Postgres and in-memory)
"""

from medroute.db.memory import InMemoryDocumentStore, InMemoryVectorStore
from medroute.db.models import (
    EMBEDDING_DIMENSION,
    Base,
    DocumentChunk,
    MedicalReference,
    embedding_column_dimension,
    set_embedding_dimension,
)
from medroute.db.postgres import (
    MAX_OVERFLOW,
    POOL_RECYCLE,
    POOL_SIZE,
    check_database_health,
    check_pgvector_extension,
    close_db,
    create_db_engine,
    create_session_factory,
    get_db_session,
    init_db,
)
from medroute.db.stores import PgDocumentStore, PgVectorStore

__all__ = [
    # Base
    "Base",
    # Models
    "MedicalReference",
    "DocumentChunk",
    # Stores
    "PgDocumentStore",
    "PgVectorStore",
    "InMemoryDocumentStore",
    "InMemoryVectorStore",
    # Constants
    "EMBEDDING_DIMENSION",
    "POOL_SIZE",
    "MAX_OVERFLOW",
    "POOL_RECYCLE",
    # Functions
    "create_db_engine",
    "create_session_factory",
    "get_db_session",
    "init_db",
    "close_db",
    "check_database_health",
    "check_pgvector_extension",
    "set_embedding_dimension",
    "embedding_column_dimension",
]
