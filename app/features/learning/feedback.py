"""
Pure learning math.

Turns one user action into sender reputation and pattern weight
updates. Nothing here touches storage, so every formula can be checked
in isolation.
"""

from app.features.learning.domain import FEEDBACK_BY_ACTION, Feedback, SenderState, UserAction

VIP_POSITIVE_STEP = 0.1
VIP_NEGATIVE_STEP = -0.05
CONFIDENCE_PER_INTERACTION = 0.05
CONFIDENCE_CEILING = 0.9
PATTERN_LEARNING_RATE = 0.1
PATTERN_WEIGHT_MIN = 0.1
PATTERN_WEIGHT_MAX = 2.0

# Threshold on the 0-100 score scale above which an item is predicted as wanted.
EXPECTED_POSITIVE_SCORE = 70

NEW_SENDER_VIP_SCORE = 0.7
NEW_SENDER_CONFIDENCE = 0.3

_FEEDBACK_SIGN = {Feedback.POSITIVE: 1, Feedback.NEUTRAL: 0, Feedback.NEGATIVE: -1}


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def derive_feedback(action: UserAction) -> Feedback:
    return FEEDBACK_BY_ACTION[UserAction(action)]


def next_vip_score(current: float, feedback: Feedback) -> float:
    if feedback == Feedback.POSITIVE:
        step = VIP_POSITIVE_STEP
    elif feedback == Feedback.NEGATIVE:
        step = VIP_NEGATIVE_STEP
    else:
        step = 0.0
    return _clamp(current + step, 0.0, 1.0)


def next_confidence(interaction_count: int, feedback: Feedback) -> float:
    """Confidence grows with interactions; positive feedback nudges it up, negative down."""
    base = min(CONFIDENCE_CEILING, interaction_count * CONFIDENCE_PER_INTERACTION)
    if feedback == Feedback.POSITIVE:
        base *= 1.1
    elif feedback == Feedback.NEGATIVE:
        base *= 0.9
    return min(1.0, base)


def apply_to_sender(state: SenderState | None, sender_email: str, feedback: Feedback) -> SenderState | None:
    """
    Sender state after one piece of feedback.

    Unknown senders only start being tracked on positive feedback; for
    anything else the result is None and nothing should be stored.
    """
    if state is None:
        if feedback != Feedback.POSITIVE:
            return None
        return SenderState(
            sender_email=sender_email,
            vip_score=NEW_SENDER_VIP_SCORE,
            confidence=NEW_SENDER_CONFIDENCE,
            interaction_count=1,
        )

    count = state.interaction_count + 1
    return SenderState(
        sender_email=state.sender_email,
        vip_score=next_vip_score(state.vip_score, feedback),
        confidence=next_confidence(count, feedback),
        interaction_count=count,
        score_boost=state.score_boost,
    )


def pattern_adjustment(feedback: Feedback, item_score: float | None) -> float:
    """
    Signed weight delta for each pattern present on the item.

    Positive feedback moves weights more on high-scored items; negative
    feedback moves them more on low-scored ones.
    """
    sign = _FEEDBACK_SIGN[feedback]
    if sign == 0:
        return 0.0
    strength = _clamp((item_score or 0) / 100, 0.0, 1.0)
    if sign < 0:
        strength = 1 - strength
    return PATTERN_LEARNING_RATE * sign * strength


def next_pattern_weight(current: float, adjustment: float) -> float:
    return _clamp(current + adjustment, PATTERN_WEIGHT_MIN, PATTERN_WEIGHT_MAX)


def was_prediction_accurate(item_score: float, feedback: Feedback) -> bool:
    expected_positive = item_score >= EXPECTED_POSITIVE_SCORE
    return expected_positive == (feedback == Feedback.POSITIVE)
