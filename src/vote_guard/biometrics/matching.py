"""Duplicate-vote matching against the remote registry and a local cache.

The backend registry is the source of truth. The in-process cache only
knows faces stored by this process, so the local fallback cannot see votes
cast on other devices or in other sessions; it is a best-effort answer
while the backend is unreachable.
"""

import logging
import time
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

import numpy as np

from ..constants import MatchingConfig, get_matching_config
from ..errors import ApiError
from .types import DuplicateCheckResult, DuplicateMatch, FaceDescriptor, FaceSignature

if TYPE_CHECKING:
    from ..api.client import ApiClient

logger = logging.getLogger(__name__)


def euclidean_distance(a: FaceDescriptor, b: FaceDescriptor) -> float:
    """Euclidean distance between two descriptors (lower means more similar)."""
    return float(np.linalg.norm(a.values - b.values))


def biometric_hash(descriptor: FaceDescriptor) -> str:
    """Fold a descriptor into a short hex string for audit correlation.

    This is a 32-bit string hash, not a cryptographic digest; it identifies
    a capture in logs and must not be used for anything security related.
    """
    text = ",".join(repr(float(v)) for v in descriptor.values)
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return format(abs(h), "x")


class DescriptorCache:
    """In-memory map of subject id to their most recent descriptor.

    Not persisted: a fresh process starts empty.
    """

    def __init__(self):
        self._entries: Dict[str, Tuple[FaceDescriptor, int]] = {}

    def store(self, subject_id: str, descriptor: FaceDescriptor) -> None:
        self._entries[subject_id] = (descriptor, int(time.time() * 1000))
        logger.debug(f"Cached descriptor for {subject_id} ({len(self._entries)} total)")

    def find_matches(
        self,
        descriptor: FaceDescriptor,
        threshold: float,
        exclude_subject_id: Optional[str] = None,
    ) -> List[DuplicateMatch]:
        """Return cached subjects closer than ``threshold``, best first."""
        matches = []
        for subject_id, (stored, timestamp) in self._entries.items():
            if exclude_subject_id is not None and subject_id == exclude_subject_id:
                continue
            distance = euclidean_distance(descriptor, stored)
            if distance < threshold:
                matches.append(DuplicateMatch(
                    subject_id=subject_id,
                    confidence=max(0.0, 1.0 - distance),
                    distance=distance,
                    timestamp=timestamp,
                ))
        return sorted(matches, key=lambda m: m.distance)

    def clear(self) -> None:
        """Forget every stored descriptor."""
        self._entries.clear()
        logger.info("Descriptor cache cleared")

    def status(self) -> Dict[str, int]:
        return {"stored_descriptors": len(self._entries)}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, subject_id: str) -> bool:
        return subject_id in self._entries


class DuplicateMatchResolver:
    """Decides whether a face was already used to vote in a scope."""

    def __init__(
        self,
        registry: Optional["ApiClient"] = None,
        cache: Optional[DescriptorCache] = None,
        config: Optional[MatchingConfig] = None,
    ):
        """Initialize the resolver.

        Args:
            registry: Backend client; None means local-only checks
            cache: Local descriptor cache shared across sessions
            config: Matching constants (uses global config if None)
        """
        self.registry = registry
        self.cache = cache if cache is not None else DescriptorCache()
        self.config = config or get_matching_config()

    def _signature(self, descriptor: FaceDescriptor) -> FaceSignature:
        return FaceSignature.from_descriptor(descriptor, version=self.config.signature_version)

    def check_duplicate(
        self,
        descriptor: FaceDescriptor,
        scope_id: str,
        exclude_subject_id: Optional[str] = None,
    ) -> DuplicateCheckResult:
        """Check the remote registry, falling back to the local cache.

        Args:
            descriptor: Face to check
            scope_id: Award the vote is for
            exclude_subject_id: Subject to ignore in the local fallback

        Returns:
            Result whose ``source`` says which path answered
        """
        if self.registry is not None:
            try:
                return self.registry.check_biometric_duplicate(
                    self._signature(descriptor), scope_id
                )
            except (ApiError, ValueError) as e:
                logger.warning(f"Remote duplicate check failed, using local cache: {e}")

        return self.check_local(descriptor, exclude_subject_id)

    def check_local(
        self,
        descriptor: FaceDescriptor,
        exclude_subject_id: Optional[str] = None,
    ) -> DuplicateCheckResult:
        """Check only the in-process cache."""
        matches = self.cache.find_matches(
            descriptor, self.config.match_threshold, exclude_subject_id
        )
        return DuplicateCheckResult.from_matches(matches, source="local")

    def store_for_future_checks(
        self,
        descriptor: FaceDescriptor,
        scope_id: str,
        subject_id: str,
    ) -> bool:
        """Record a verified face locally and in the backend registry.

        Backend failures are logged and swallowed: verification has already
        succeeded and storage is advisory.

        Returns:
            True if the backend acknowledged the write
        """
        self.cache.store(subject_id, descriptor)

        if self.registry is None:
            return False

        try:
            self.registry.store_biometric_data(self._signature(descriptor), scope_id, subject_id)
            return True
        except ApiError as e:
            logger.error(f"Failed to store biometric data: {e}")
            return False
