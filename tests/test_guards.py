import pytest

from truthchain.models.attestation import ImageMetadata, Recommendation
from truthchain.services.reputation import (
    DAY_MS,
    CreatorReputation,
    ReputationTracker,
    score_reputation,
)
from truthchain.services.similarity import SimilarityGuard, compute_signature, decide, similarity_score

META = ImageMetadata(width=1920, height=1080, format="jpeg", size=245_000)


def content_hash(prefix):
    return prefix + "0" * (64 - len(prefix))


class FakeClock:
    def __init__(self, now=1_000_000):
        self.now = now

    def __call__(self):
        return self.now


def test_identical_signatures_are_fully_similar():
    signature = compute_signature(META, content_hash("abcd"))
    assert similarity_score(signature, signature) == 100


def test_neighbouring_dimensions_differ_by_one_bit():
    a = compute_signature(ImageMetadata(width=100, height=50), content_hash("0000"))
    b = compute_signature(ImageMetadata(width=101, height=50), content_hash("0000"))
    assert similarity_score(a, b) == 98


def test_format_changes_signature():
    png = META.model_copy(update={"format": "png"})
    assert compute_signature(png, content_hash("0000")) != compute_signature(META, content_hash("0000"))


@pytest.mark.parametrize("similarity,expected", [
    (None, Recommendation.ALLOW),
    (100, Recommendation.BLOCK),
    (95, Recommendation.BLOCK),
    (94, Recommendation.WARN),
    (85, Recommendation.WARN),
    (84, Recommendation.ALLOW),
])
def test_decide_thresholds(similarity, expected):
    assert decide(similarity) == expected


def test_guard_blocks_near_duplicate():
    guard = SimilarityGuard()
    guard.remember(META, content_hash("0000"), "0x1", creator="0xalice", timestamp=1)

    decision = guard.validate(content_hash("0001"), META, "reuters.com")
    assert decision.recommendation == Recommendation.BLOCK
    assert not decision.allowed
    assert decision.score == 98.0
    assert "98% similarity" in decision.warnings[0]


def test_guard_warns_on_similar_image():
    guard = SimilarityGuard()
    guard.remember(META, content_hash("0000"), "0x1")

    decision = guard.validate(content_hash("000f"), META, "reuters.com")
    assert decision.recommendation == Recommendation.WARN
    assert decision.allowed
    assert decision.score == 94.0


def test_guard_allows_unrelated_image():
    guard = SimilarityGuard()
    guard.remember(META, content_hash("0000"), "0x1")

    decision = guard.validate(content_hash("ffff"), META, "reuters.com")
    assert decision.recommendation == Recommendation.ALLOW
    assert decision.warnings == []
    assert guard.find_similar(compute_signature(META, content_hash("ffff"))) == []


def test_guard_flags_suspicious_source():
    decision = SimilarityGuard().validate(content_hash("abcd"), META, "Test-Uploads")
    assert decision.recommendation == Recommendation.WARN
    assert decision.score is None
    assert 'Source appears suspicious: "Test-Uploads"' in decision.warnings


def test_guard_threshold_validation():
    with pytest.raises(ValueError):
        SimilarityGuard(block_threshold=80, warn_threshold=90)


def test_new_creator_scores_base():
    tracker = ReputationTracker()
    reputation = tracker.get("0xnew")
    assert reputation.score == 50
    assert reputation.is_trusted is False
    assert tracker.validate("0xnew").recommendation == Recommendation.ALLOW


def test_verified_registrations_make_creator_trusted():
    tracker = ReputationTracker()
    for _ in range(6):
        tracker.record_registration("0xalice", verified=True)

    assert tracker.get("0xalice").score == 80
    assert tracker.is_trusted("0xalice")


def test_volume_bonus_is_capped():
    reputation = CreatorReputation(address="0xa", total_registrations=100, verified_registrations=100)
    assert score_reputation(reputation, now=0) == 90


def test_challenge_penalties():
    tracker = ReputationTracker()
    tracker.record_registration("0xbob", verified=True)
    snapshot = tracker.record_challenge("0xbob", successful=False)

    # 50 + 5 verified - 20 * (1 challenge / 1 registration)
    assert snapshot.score == 35
    decision = tracker.validate("0xbob")
    assert decision.recommendation == Recommendation.WARN
    assert decision.warnings == ["Moderate reputation score: 35/100"]


def test_successful_challenges_block_creator():
    tracker = ReputationTracker()
    for _ in range(3):
        tracker.record_challenge("0xmallory", successful=True)

    assert tracker.get("0xmallory").score == 0
    decision = tracker.validate("0xmallory")
    assert decision.recommendation == Recommendation.BLOCK
    assert decision.warnings[0] == "Low reputation score: 0/100"
    assert "3 challenged registrations" in decision.warnings[1]


def test_inactivity_penalty():
    clock = FakeClock()
    tracker = ReputationTracker(clock=clock)
    tracker.record_registration("0xcarol")
    assert tracker.get("0xcarol").score == 50

    clock.now += 31 * DAY_MS
    assert tracker.get("0xcarol").score == 45


def test_no_inactivity_penalty_without_registrations():
    assert score_reputation(CreatorReputation(address="0xa"), now=10 ** 13) == 50


def test_registration_burst_is_flagged_as_spam():
    tracker = ReputationTracker(clock=FakeClock())
    for _ in range(51):
        tracker.record_registration("0xspam")

    decision = tracker.validate("0xspam")
    assert decision.score == 60
    assert decision.recommendation == Recommendation.WARN
    assert "High registration rate detected (potential spam)" in decision.warnings


def test_snapshots_are_detached():
    tracker = ReputationTracker()
    snapshot = tracker.get("0xdave")
    snapshot.total_registrations = 99
    assert tracker.get("0xdave").total_registrations == 0
    assert tracker.addresses() == []
    assert tracker.get("0xdave").to_dict()["reputationScore"] == 50
