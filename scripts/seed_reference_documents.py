#!/usr/bin/env python3
"""
Seed the corpus with baseline medical reference documents and index them.

This script:
1. Builds the service container from the environment
2. Creates any sample documents whose title is not already in the corpus
3. Ingests every active document (chunk, embed, store)
4. Prints the resulting index status

Run: python scripts/seed_reference_documents.py

Prerequisites:
- PostgreSQL with pgvector (or STORAGE_BACKEND=memory for a dry run)
- The configured embedding backend (sentence-transformers model or OpenAI key)
"""

import asyncio
import logging
import sys

from medroute.config import Settings
from medroute.container import build_container
from medroute.core.errors import ConfigurationError
from medroute.core.models import DocumentType, NewDocument

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


SAMPLE_DOCUMENTS = [
    NewDocument(
        title="Emergency Triage Protocol",
        document_type=DocumentType.PROTOCOL,
        source="CAF Health Services",
        tags=["emergency", "triage", "chest-pain"],
        version="2024",
        content=(
            "Purpose. This protocol defines how clinic staff identify patients who need "
            "immediate emergency care. Any member presenting with sudden chest pain, chest "
            "pressure radiating to the arm or jaw, or shortness of breath at rest must be "
            "referred to the emergency department without delay.\n\n"
            "Red flags. Severe bleeding that cannot be controlled with pressure, loss of "
            "consciousness, sudden weakness on one side of the body, slurred speech and "
            "severe difficulty breathing are emergency indicators. Staff must call emergency "
            "services and begin first aid while waiting for transport.\n\n"
            "Documentation. Record the time of onset, vital signs and any medications given. "
            "Hand the record to the receiving emergency team."
        ),
    ),
    NewDocument(
        title="Physiotherapy Referral Guidelines",
        document_type=DocumentType.GUIDELINE,
        source="CAF Health Services",
        tags=["physio", "musculoskeletal"],
        version="2024",
        content=(
            "Scope. These guidelines cover referral of members with musculoskeletal "
            "injuries to physiotherapy. Typical presentations include ankle sprains, knee "
            "strain after running, lower back stiffness and shoulder overuse injuries.\n\n"
            "Referral criteria. Refer when pain limits training for more than one week, when "
            "range of motion is reduced, or when a structured rehabilitation program is needed "
            "before return to full duties. Provide the injury date and mechanism of injury."
        ),
    ),
    NewDocument(
        title="Mental Health Support Guideline",
        document_type=DocumentType.GUIDELINE,
        source="CAF Mental Health Services",
        tags=["mental-health", "stress", "anxiety"],
        version="2024",
        content=(
            "Overview. Members reporting persistent stress, anxiety, low mood or sleep "
            "disturbance should be offered a mental health assessment. Counseling services "
            "are available through the base mental health team.\n\n"
            "Urgent situations. Any expression of intent to self-harm requires same-day "
            "assessment. Do not leave the member alone and contact the duty clinician."
        ),
    ),
    NewDocument(
        title="Sick Parade Appointment Policy",
        document_type=DocumentType.POLICY,
        source="CAF Health Services",
        tags=["policy", "appointments"],
        version="2024",
        content=(
            "Policy statement. Members are seen at sick parade for new, non-urgent health "
            "concerns. Routine concerns are booked with a general practitioner within five "
            "working days. Follow-up of chronic conditions is scheduled by the primary care "
            "team.\n\n"
            "Responsibilities. Unit leadership must release members to attend scheduled "
            "appointments. Clinic staff must record the reason for every missed appointment."
        ),
    ),
]


async def seed() -> bool:
    print("=" * 60)
    print("MedRoute Reference Document Seeding")
    print("=" * 60)
    print()

    print("[1/4] Building services...")
    try:
        container = await build_container(Settings.from_env())
    except ConfigurationError as e:
        print(f"      ERROR: {e}")
        return False

    try:
        print("[2/4] Creating sample documents...")
        existing = {d.title for d in await container.document_store.list_active()}
        created = 0
        for document in SAMPLE_DOCUMENTS:
            if document.title in existing:
                continue
            await container.document_store.create(document)
            created += 1
        print(f"      Created {created} documents ({len(existing)} already present).")

        print("[3/4] Ingesting active documents...")
        report = await container.retrieval.ingest_all()
        print(f"      {report.success} succeeded, {report.failed} failed.")

        print("[4/4] Index status:")
        status = await container.retrieval.get_index_status()
        print(f"      Documents: {status.total_documents}")
        print(f"      Indexed:   {status.indexed_documents}")
        print(f"      Chunks:    {status.total_chunks}")
        return report.failed == 0
    finally:
        await container.aclose()


def main() -> int:
    return 0 if asyncio.run(seed()) else 1


if __name__ == "__main__":
    sys.exit(main())
