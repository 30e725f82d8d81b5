"""
ORM detection from catalog metadata.

Classifies a database as managed by an ORM migration tool by looking at the
bookkeeping tables those tools create and, failing that, at table naming
conventions. The result is advisory and never drives execution.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Iterable, Dict, Any


class DetectedOrm(str, Enum):
    """ORM classification."""
    PRISMA = "PRISMA"
    DRIZZLE = "DRIZZLE"
    UNKNOWN = "UNKNOWN"


BOOKKEEPING_CONFIDENCE = 0.8
NAMING_CONFIDENCE = 0.5

_CAMEL_PREFIX = re.compile(r"^[a-z]+[A-Z]")


@dataclass
class OrmDetectionResult:
    """Best-effort ORM classification with supporting evidence."""
    detected: DetectedOrm = DetectedOrm.UNKNOWN
    confidence: float = 0.0
    evidence: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'detected_orm': self.detected.value,
            'confidence': self.confidence,
            'evidence': list(self.evidence)
        }

    @classmethod
    def failed(cls, error: Exception) -> 'OrmDetectionResult':
        """Result for a probe that could not run."""
        return cls(
            detected=DetectedOrm.UNKNOWN,
            confidence=0.0,
            evidence=[str(error) or "ORM detection failed"]
        )


def _is_prisma_bookkeeping(name: str) -> bool:
    return name == "_prisma_migrations" or "_prisma_" in name


def _is_drizzle_bookkeeping(name: str) -> bool:
    return name == "__drizzle_migrations" or "_drizzle_" in name


def classify_tables(table_names: Iterable[str]) -> OrmDetectionResult:
    """
    Classify a schema from its table names.

    Bookkeeping tables (``_prisma_migrations``, ``__drizzle_migrations``)
    give high confidence. Otherwise snake_case names lean Prisma and
    double-underscore or camelCase names lean Drizzle, with lower
    confidence.

    Args:
        table_names: Table names of the inspected schema

    Returns:
        OrmDetectionResult
    """
    names = [name for name in table_names if name]
    evidence: List[str] = []

    has_prisma = any(_is_prisma_bookkeeping(name.lower()) for name in names)
    has_drizzle = any(_is_drizzle_bookkeeping(name.lower()) for name in names)

    if has_prisma:
        evidence.append("Found Prisma migration tables")
    if has_drizzle:
        evidence.append("Found Drizzle migration tables")

    if has_prisma:
        return OrmDetectionResult(DetectedOrm.PRISMA, BOOKKEEPING_CONFIDENCE, evidence)
    if has_drizzle:
        return OrmDetectionResult(DetectedOrm.DRIZZLE, BOOKKEEPING_CONFIDENCE, evidence)

    prisma_like = [name for name in names if "_" in name and "__" not in name]
    drizzle_like = [name for name in names if "__" in name or _CAMEL_PREFIX.match(name)]

    if len(prisma_like) > len(drizzle_like):
        evidence.append("Table naming suggests Prisma conventions")
        return OrmDetectionResult(DetectedOrm.PRISMA, NAMING_CONFIDENCE, evidence)
    if len(drizzle_like) > len(prisma_like):
        evidence.append("Table naming suggests Drizzle conventions")
        return OrmDetectionResult(DetectedOrm.DRIZZLE, NAMING_CONFIDENCE, evidence)

    evidence.append("Could not determine ORM type with high confidence")
    return OrmDetectionResult(DetectedOrm.UNKNOWN, NAMING_CONFIDENCE, evidence)
