"""Pre-auth order lifecycle: allowed transitions and decision-to-status mapping."""

from .models import Decision, PreAuthStatus

PRE_AUTH_TRANSITIONS: dict[PreAuthStatus, frozenset[PreAuthStatus]] = {
    PreAuthStatus.CREATED: frozenset(
        {PreAuthStatus.AUTO_APPROVED, PreAuthStatus.AUTO_DECLINED, PreAuthStatus.PENDING_REVIEW}
    ),
    PreAuthStatus.PENDING_REVIEW: frozenset(
        {PreAuthStatus.MANUAL_APPROVED, PreAuthStatus.MANUAL_DECLINED, PreAuthStatus.EXPIRED}
    ),
    PreAuthStatus.AUTO_APPROVED: frozenset({PreAuthStatus.MOVED_TO_POST_AUTH}),
    PreAuthStatus.MANUAL_APPROVED: frozenset({PreAuthStatus.MOVED_TO_POST_AUTH}),
    PreAuthStatus.AUTO_DECLINED: frozenset(),
    PreAuthStatus.MANUAL_DECLINED: frozenset(),
    PreAuthStatus.EXPIRED: frozenset(),
    PreAuthStatus.MOVED_TO_POST_AUTH: frozenset(),
}

DECISION_STATUS: dict[Decision, PreAuthStatus] = {
    Decision.APPROVE: PreAuthStatus.AUTO_APPROVED,
    Decision.DECLINE: PreAuthStatus.AUTO_DECLINED,
    Decision.REVIEW: PreAuthStatus.PENDING_REVIEW,
}

APPROVED_STATUSES = frozenset({PreAuthStatus.AUTO_APPROVED, PreAuthStatus.MANUAL_APPROVED})
