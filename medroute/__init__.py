"""
MedRoute - Clinical Context Engine

Retrieval-augmented context engine for medical triage flows. Given free-text
clinical queries it returns ranked, evidence-bearing passages drawn from a
corpus of protocol and policy documents, and grows that corpus over time.

Features:
- Chunking + batch embedding ingestion pipeline
- Vector similarity search with per-use-case retrieval policies
- Partitioned TTL/LRU cache with hit-rate accounting
- Continuous improvement: gap detection, web discovery, auto-ingestion
"""

__version__ = "0.1.0"
__author__ = "MedRoute Team"
