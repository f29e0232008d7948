"""
Input Validation for MedRoute

Request models for the HTTP surface and a validator that rejects
script/markup injection and obvious SQL payloads in free-text queries.
Clinical text legitimately contains semicolons and dashes, so only
statement-shaped SQL is treated as dangerous.
"""

import logging
import re

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from medroute.core.models import DocumentType

logger = logging.getLogger(__name__)

# Dangerous patterns
SQL_INJECTION_PATTERNS = [
    re.compile(r"\bUNION\s+(ALL\s+)?SELECT\b", re.IGNORECASE),
    re.compile(r"\b(DROP|TRUNCATE|ALTER)\s+TABLE\b", re.IGNORECASE),
    re.compile(r"\bDELETE\s+FROM\b", re.IGNORECASE),
    re.compile(r"\bINSERT\s+INTO\b", re.IGNORECASE),
    re.compile(r"('\s*(OR|AND)\s+'|\bOR\b\s+\d+\s*=\s*\d+)", re.IGNORECASE),
    re.compile(r"(/\*|\*/|@@|\bexec\s*\()", re.IGNORECASE),
]

XSS_PATTERNS = [
    re.compile(r"<\s*script", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<\s*iframe", re.IGNORECASE),
    re.compile(r"<\s*object", re.IGNORECASE),
    re.compile(r"<\s*embed", re.IGNORECASE),
]

MAX_QUERY_LENGTH = 2000
APPOINTMENT_TYPES = {"ER referral", "specialist", "mental health", "physio", "GP"}
CONTEXT_POLICIES = {"general", "triage", "emergency", "mental_health"}


class SearchRequest(BaseModel):
    """Validated similarity search request."""

    query: str = Field(..., max_length=MAX_QUERY_LENGTH)
    limit: int = Field(10, ge=1, le=50)
    threshold: float = Field(0.78, ge=-1.0, le=1.0)
    document_types: list[DocumentType] | None = None

    @field_validator("query")
    @classmethod
    def strip_query(cls, v: str) -> str:
        return v.strip()


class ContextRequest(BaseModel):
    """Validated context request. ``policy`` picks the retrieval policy."""

    query: str = Field(..., max_length=MAX_QUERY_LENGTH)
    policy: str = "general"
    max_results: int = Field(5, ge=1, le=20)
    threshold: float | None = Field(None, ge=-1.0, le=1.0)
    document_types: list[DocumentType] | None = None
    appointment_type: str | None = None

    @field_validator("policy")
    @classmethod
    def validate_policy(cls, v: str) -> str:
        if v not in CONTEXT_POLICIES:
            raise ValueError(f"policy must be one of: {sorted(CONTEXT_POLICIES)}")
        return v


class IngestRequest(BaseModel):
    """Ingest one document, or every active document when no id is given."""

    document_id: str | None = None
    document_types: list[DocumentType] | None = None


class DocumentCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    document_type: DocumentType
    source: str = Field(..., min_length=1, max_length=255)
    url: str | None = None
    content: str = Field(..., min_length=1)
    version: str | None = None
    tags: list[str] = Field(default_factory=list)
    ingest: bool = True


class AnalysisRequest(BaseModel):
    """Continuous-improvement analysis of a classified query."""

    text: str = Field(..., min_length=1, max_length=MAX_QUERY_LENGTH)
    appointment_type: str
    reason: str | None = None

    @field_validator("appointment_type")
    @classmethod
    def validate_appointment_type(cls, v: str) -> str:
        if v not in APPOINTMENT_TYPES:
            raise ValueError(f"appointment_type must be one of: {sorted(APPOINTMENT_TYPES)}")
        return v


class WebSearchRequest(BaseModel):
    """Web search across the authority streams."""

    query: str = Field(..., min_length=1, max_length=MAX_QUERY_LENGTH)
    type: Literal["general", "research", "trade_requirements"] = "general"
    trade: str | None = Field(None, min_length=1, max_length=100)

    @model_validator(mode="after")
    def check_trade(self) -> "WebSearchRequest":
        if self.type == "trade_requirements" and not self.trade:
            raise ValueError("trade is required for trade_requirements searches")
        return self


class InputValidator:
    """Validates input against injection patterns."""

    def check_sql_injection(self, text: str) -> bool:
        """Return True if SQL injection pattern detected."""
        for pattern in SQL_INJECTION_PATTERNS:
            if pattern.search(text):
                logger.warning("SQL injection pattern detected: %s", text[:100])
                return True
        return False

    def check_xss(self, text: str) -> bool:
        """Return True if XSS pattern detected."""
        for pattern in XSS_PATTERNS:
            if pattern.search(text):
                logger.warning("XSS pattern detected: %s", text[:100])
                return True
        return False

    def is_safe(self, text: str) -> bool:
        """Return True if input passes all safety checks."""
        return not self.check_sql_injection(text) and not self.check_xss(text)

    def sanitize(self, text: str) -> str:
        """Strip null bytes and control characters (except newlines and tabs)."""
        text = text.replace("\x00", "")
        text = re.sub(r"[\x01-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)
        return text.strip()
