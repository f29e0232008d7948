"""
MedRoute Error Taxonomy

Configuration errors are fatal and raised at startup. Everything else is
caught at a service boundary and turned into a degraded result: a False
ingestion outcome, an empty search result or a generic knowledge gap.
"""


class MedRouteError(Exception):
    """Base class for all MedRoute errors."""

    pass


class ConfigurationError(MedRouteError):
    """Raised when required configuration or credentials are missing or invalid."""

    pass


class EmbeddingError(MedRouteError):
    """Raised when an embedding provider call fails or returns a wrong count."""

    pass


class EmbeddingDimensionError(EmbeddingError):
    """Raised when a vector does not match the corpus dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )


class DocumentNotFoundError(MedRouteError):
    """Raised when a document id does not exist in the DocumentStore."""

    pass


class DocumentInactiveError(MedRouteError):
    """Raised when ingestion is requested for a deactivated document."""

    pass


class ChunkingError(MedRouteError):
    """Raised when document content yields no valid chunks."""

    pass


class DiscoveryError(MedRouteError):
    """Raised when a web discovery call fails."""

    pass
