"""
Autopilot safety policy.

Pure decisions over plain values: which recommendations may enter the queue,
whether a queued item may be applied now, and whether an applied change should
be rolled back. Persistence and locking live in optimizer.queue.
"""
from dataclasses import dataclass

from .exceptions import PolicyViolation

# Change type -> field on the page it rewrites and whether it is safe to
# automate. H1 rewrites change on-page content, so they are only admissible
# when an administrator adds them to the allowed list explicitly.
CHANGE_TYPES = {
    'title': {'field': 'title', 'safe': True},
    'meta_description': {'field': 'meta_description', 'safe': True},
    'schema': {'field': 'schema', 'safe': True},
    'h1': {'field': 'h1', 'safe': False},
}

# Recommendation categories that imply a change type when the model names no field.
CATEGORY_CHANGE_TYPES = {
    'title': 'title',
    'meta': 'meta_description',
}


def change_type_for(field_name, category):
    """Resolve the change type a recommendation would apply, or None."""
    if field_name and field_name in CHANGE_TYPES:
        return field_name
    return CATEGORY_CHANGE_TYPES.get(category)


def is_high_traffic(impressions_7d, threshold):
    return (impressions_7d or 0) > threshold


@dataclass(frozen=True)
class Admission:
    admitted: bool
    reason: str = ''
    change_type: str = ''
    is_high_traffic: bool = False
    requires_approval: bool = False


def evaluate_admission(change_type, confidence, impressions_7d, settings):
    """
    Decide whether a recommendation becomes a QueueItem and whether it will
    need a human before it can be applied.
    """
    if not change_type:
        return Admission(False, 'unsupported_change_type')
    if change_type not in (settings.allowed_change_types or []):
        return Admission(False, 'change_type_not_allowed', change_type)

    high_traffic = is_high_traffic(impressions_7d, settings.high_traffic_threshold)
    requires_approval = high_traffic or (confidence or 0) < settings.confidence_threshold
    return Admission(
        True,
        'requires_approval' if requires_approval else 'auto',
        change_type,
        is_high_traffic=high_traffic,
        requires_approval=requires_approval,
    )


def check_apply_gate(item, settings):
    """
    Confidence and approval half of the automatic apply gate. The daily-cap
    half is enforced atomically when the slot is reserved.
    """
    if item.ai_confidence < settings.confidence_threshold:
        raise PolicyViolation(
            'below_confidence_threshold',
            f"Confidence {item.ai_confidence} is below threshold {settings.confidence_threshold}",
        )
    if item.requires_approval and item.status != 'approved':
        raise PolicyViolation('awaiting_approval', "Item requires approval before it can be applied")


def drop_percent(baseline, current):
    if not baseline or baseline <= 0 or current is None:
        return 0.0
    return (baseline - current) * 100 / baseline


def should_revert(baseline, current, threshold):
    return drop_percent(baseline, current) > threshold
