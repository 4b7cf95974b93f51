"""
Creator reputation scoring.

score_reputation is a pure function of the counters and the current time;
ReputationTracker holds the counters and applies the policy.
"""

import threading
import structlog
from dataclasses import dataclass, replace
from typing import Callable, Dict, List

from truthchain.core.utils import now_ms
from truthchain.models.attestation import GuardDecision, Recommendation

logger = structlog.get_logger()

BASE_SCORE = 50
TRUSTED_SCORE = 70
BLOCK_FLOOR = 20
LOW_SCORE = 30
MODERATE_SCORE = 50
SPAM_REGISTRATIONS = 50

DAY_MS = 24 * 60 * 60 * 1000
INACTIVITY_DAYS = 30


@dataclass
class CreatorReputation:
    address: str
    total_registrations: int = 0
    verified_registrations: int = 0
    challenges: int = 0
    successful_challenges: int = 0
    last_registration: int = 0
    score: int = BASE_SCORE
    is_trusted: bool = False

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "totalRegistrations": self.total_registrations,
            "verifiedRegistrations": self.verified_registrations,
            "challenges": self.challenges,
            "successfulChallenges": self.successful_challenges,
            "lastRegistration": self.last_registration,
            "reputationScore": self.score,
            "isTrusted": self.is_trusted,
        }


def score_reputation(reputation: CreatorReputation, now: int) -> int:
    """Bounded 0-100 score from activity counters."""
    score = float(BASE_SCORE)

    if reputation.verified_registrations > 0:
        score += min(reputation.verified_registrations * 5, 30)
    if reputation.total_registrations > 10:
        score += min((reputation.total_registrations - 10) * 0.5, 10)

    if reputation.challenges > 0:
        challenge_rate = reputation.challenges / max(reputation.total_registrations, 1)
        score -= challenge_rate * 20
    if reputation.successful_challenges > 0:
        score -= reputation.successful_challenges * 10

    if reputation.last_registration and (now - reputation.last_registration) > INACTIVITY_DAYS * DAY_MS:
        score -= 5

    # round half up
    return max(0, min(100, int(score + 0.5)))


def reputation_policy(reputation: CreatorReputation, now: int, block_floor: int = BLOCK_FLOOR) -> GuardDecision:
    score = reputation.score
    warnings = []

    if score < LOW_SCORE:
        warnings.append(f"Low reputation score: {score}/100")
        warnings.append(f"This creator has {reputation.challenges} challenged registrations")
    elif score < MODERATE_SCORE:
        warnings.append(f"Moderate reputation score: {score}/100")

    if (reputation.total_registrations > SPAM_REGISTRATIONS
            and now - reputation.last_registration < DAY_MS):
        warnings.append("High registration rate detected (potential spam)")

    if score < block_floor:
        recommendation = Recommendation.BLOCK
    elif warnings:
        recommendation = Recommendation.WARN
    else:
        recommendation = Recommendation.ALLOW

    return GuardDecision(guard="reputation", recommendation=recommendation, warnings=warnings, score=score)


class ReputationTracker:
    """In-process reputation store keyed by creator address."""

    def __init__(self, block_floor: int = BLOCK_FLOOR, clock: Callable[[], int] = now_ms):
        self.block_floor = block_floor
        self.clock = clock
        self._store: Dict[str, CreatorReputation] = {}
        self._lock = threading.Lock()

    def _refresh(self, reputation: CreatorReputation) -> CreatorReputation:
        reputation.score = score_reputation(reputation, self.clock())
        reputation.is_trusted = reputation.score >= TRUSTED_SCORE
        return reputation

    def get(self, address: str) -> CreatorReputation:
        """Snapshot of a creator's reputation; unknown creators start at the base score."""
        with self._lock:
            reputation = self._store.get(address) or CreatorReputation(address=address)
            return replace(self._refresh(reputation))

    def record_registration(self, address: str, verified: bool = False) -> CreatorReputation:
        with self._lock:
            reputation = self._store.setdefault(address, CreatorReputation(address=address))
            reputation.total_registrations += 1
            if verified:
                reputation.verified_registrations += 1
            reputation.last_registration = self.clock()
            self._refresh(reputation)
            snapshot = replace(reputation)

        logger.debug("Recorded registration", creator=address, score=snapshot.score)
        return snapshot

    def record_challenge(self, address: str, successful: bool) -> CreatorReputation:
        with self._lock:
            reputation = self._store.setdefault(address, CreatorReputation(address=address))
            reputation.challenges += 1
            if successful:
                reputation.successful_challenges += 1
            self._refresh(reputation)
            snapshot = replace(reputation)

        logger.info("Recorded challenge", creator=address, successful=successful, score=snapshot.score)
        return snapshot

    def is_trusted(self, address: str) -> bool:
        return self.get(address).is_trusted

    def validate(self, address: str) -> GuardDecision:
        decision = reputation_policy(self.get(address), self.clock(), self.block_floor)
        if decision.warnings:
            logger.info("Reputation guard raised warnings",
                        creator=address, score=decision.score, recommendation=decision.recommendation.value)
        return decision

    def addresses(self) -> List[str]:
        with self._lock:
            return list(self._store)
