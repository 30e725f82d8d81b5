"""
Content checksums for drift detection.
"""

import hashlib
import hmac
from typing import Optional

from ..exceptions import ChecksumMismatchError


def compute_checksum(content: str) -> str:
    """SHA-256 hex digest of migration content."""
    return hashlib.sha256(content.encode('utf-8')).hexdigest()


def verify_checksum(migration_id: str, content: str, expected: Optional[str]) -> None:
    """
    Verify content against a checksum captured earlier.

    Args:
        migration_id: Migration identifier, used in the error
        content: Current content
        expected: Checksum supplied by the caller; ``None`` skips the check

    Raises:
        ChecksumMismatchError: If the content hash differs
    """
    if not expected:
        return
    actual = compute_checksum(content)
    if not hmac.compare_digest(actual.encode(), expected.strip().lower().encode()):
        raise ChecksumMismatchError(migration_id, expected_checksum=expected, actual_checksum=actual)
