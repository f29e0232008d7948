"""
MedRoute Security Module

Security components:
- Request models for the HTTP surface
- Input validation and sanitization
"""

from medroute.security.input_validation import (
    AnalysisRequest,
    ContextRequest,
    DocumentCreateRequest,
    IngestRequest,
    InputValidator,
    SearchRequest,
)

__all__ = [
    "AnalysisRequest",
    "ContextRequest",
    "DocumentCreateRequest",
    "IngestRequest",
    "InputValidator",
    "SearchRequest",
]
