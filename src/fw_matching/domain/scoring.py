"""Weighted match score.

    score = 0.4 * rating/5 + 0.3 * acceptance/100 + 0.2 * completion/100
          + 0.1 * (1 - min(distance / proximity_cap, 1))

Every component is clamped to [0, 1], so the score always lies in [0, 1].
Pure: distance is supplied by the locator, never computed here.
"""

from src.fw_matching.domain.models import FundiSnapshot, MatchCandidate

W_RATING = 0.4
W_ACCEPTANCE = 0.3
W_COMPLETION = 0.2
W_PROXIMITY = 0.1

DEFAULT_PROXIMITY_CAP_KM = 50.0


def _unit(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def match_score(
    rating: float,
    acceptance_rate: float,
    completion_rate: float,
    distance_km: float,
    proximity_cap_km: float = DEFAULT_PROXIMITY_CAP_KM,
) -> float:
    proximity = 1.0 - _unit(distance_km / proximity_cap_km) if proximity_cap_km > 0 else 0.0
    return (
        W_RATING * _unit(rating / 5.0)
        + W_ACCEPTANCE * _unit(acceptance_rate / 100.0)
        + W_COMPLETION * _unit(completion_rate / 100.0)
        + W_PROXIMITY * proximity
    )


def rank_candidates(
    fundis: list[FundiSnapshot], proximity_cap_km: float = DEFAULT_PROXIMITY_CAP_KM
) -> list[MatchCandidate]:
    """Best first. Ties go to the nearer fundi, then to the lower id for determinism."""
    candidates = [
        MatchCandidate(
            fundi_id=f.user_id,
            distance_km=f.distance_km,
            score=match_score(
                f.overall_rating,
                f.acceptance_rate,
                f.completion_rate,
                f.distance_km,
                proximity_cap_km,
            ),
        )
        for f in fundis
    ]
    return sorted(candidates, key=lambda c: (-c.score, c.distance_km, c.fundi_id))
