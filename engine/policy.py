"""
Decision policy: may a generated proposal be applied to an entity?

Rules run in order and the first failing rule decides the reason; later
rules are not evaluated. An unpublished entity therefore always reports
``not_published`` whatever its scores are.
"""
from dataclasses import dataclass
from typing import Optional

from django.conf import settings

ACTION_UPDATE = 'update'
ACTION_SKIP = 'skip'


@dataclass(frozen=True)
class PolicyInput:
    entity_type: str
    status: str
    http_status: int
    seo_fields_score_before: int
    score_before: int
    score_after: int


@dataclass(frozen=True)
class Decision:
    action: str
    risk: str
    reason: str

    @property
    def allowed(self):
        return self.action == ACTION_UPDATE

    def as_dict(self):
        return {'action': self.action, 'risk': self.risk, 'reason': self.reason}


def skip(reason):
    return Decision(action=ACTION_SKIP, risk='none', reason=reason)


def _variation(p, freeze_score, min_delta):
    return p.entity_type == 'variation' and 'variation_policy'


def _unpublished(p, freeze_score, min_delta):
    return p.status != 'publish' and 'not_published'


def _http_not_ok(p, freeze_score, min_delta):
    return p.http_status != 200 and 'http_not_200'


def _frozen(p, freeze_score, min_delta):
    return p.seo_fields_score_before >= freeze_score and 'frozen_score'


def _delta_too_small(p, freeze_score, min_delta):
    return (p.score_after - p.score_before) < min_delta and 'delta_below_threshold'


RULES = (
    _variation,
    _unpublished,
    _http_not_ok,
    _frozen,
    _delta_too_small,
)


def policy_thresholds():
    """Freeze score and minimum delta, read from settings at call time."""
    return settings.OPTIMIZATION_FREEZE_SCORE, settings.OPTIMIZATION_MIN_DELTA


def evaluate(policy_input: PolicyInput, freeze_score: Optional[int] = None,
             min_delta: Optional[int] = None) -> Decision:
    default_freeze, default_delta = policy_thresholds()
    freeze_score = default_freeze if freeze_score is None else freeze_score
    min_delta = default_delta if min_delta is None else min_delta

    for rule in RULES:
        reason = rule(policy_input, freeze_score, min_delta)
        if reason:
            return skip(reason)
    return Decision(action=ACTION_UPDATE, risk='low', reason='policy_pass')
