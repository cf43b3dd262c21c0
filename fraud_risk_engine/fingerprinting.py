from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set

from .models import CollisionResult, FingerprintCollision, FingerprintRecord


class FingerprintCollisionDetector:
    """Finds device fingerprints shared by more than one user identity."""

    def __init__(self, records: Iterable[FingerprintRecord] = ()):
        self.records_by_hash: Dict[str, List[FingerprintRecord]] = defaultdict(list)
        self.users_by_hash: Dict[str, Set[str]] = defaultdict(set)
        self.hashes_by_user: Dict[str, Set[str]] = defaultdict(set)
        for record in records:
            self.add(record)

    def add(self, record: FingerprintRecord) -> None:
        self.records_by_hash[record.hash].append(record)
        if record.user_id is not None:
            self.users_by_hash[record.hash].add(record.user_id)
            self.hashes_by_user[record.user_id].add(record.hash)

    def for_user(self, user_id: str, hashes: Optional[Iterable[str]] = None) -> CollisionResult:
        """Count other users sharing ``hashes`` (default: every hash of the user)."""
        candidates = self.hashes_by_user.get(user_id, set()) if hashes is None else set(hashes)
        others: Set[str] = set()
        for fingerprint_hash in candidates:
            others.update(self.users_by_hash.get(fingerprint_hash, set()))
        others.discard(user_id)
        return CollisionResult(collision=bool(others), collision_count=len(others))

    def collisions(self) -> List[FingerprintCollision]:
        report: List[FingerprintCollision] = []
        for fingerprint_hash, users in self.users_by_hash.items():
            if len(users) < 2:
                continue
            records = self.records_by_hash[fingerprint_hash]
            latest = max(records, key=lambda record: record.collected_at)
            report.append(
                FingerprintCollision(
                    fingerprint_hash=fingerprint_hash,
                    user_ids=sorted(users),
                    total_collections=len(records),
                    last_seen=latest.collected_at,
                    device_attributes=dict(latest.device_attributes),
                )
            )
        report.sort(key=lambda item: (-item.user_count, item.fingerprint_hash))
        return report
