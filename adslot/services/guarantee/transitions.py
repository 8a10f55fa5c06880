"""Allowed state changes for guarantee requests and guarantee slots."""
from adslot.core.errors import InvalidTransition
from adslot.models.statuses import GuaranteeRequestStatus as R, GuaranteeSlotStatus as S


REQUEST_TRANSITIONS: dict[R, frozenset[R]] = {
    R.REQUESTED: frozenset({R.NEGOTIATING, R.ACCEPTED, R.REJECTED, R.EXPIRED}),
    R.NEGOTIATING: frozenset({R.NEGOTIATING, R.ACCEPTED, R.REJECTED, R.EXPIRED}),
    # renegotiation_request reopens an accepted, not yet purchased deal
    R.ACCEPTED: frozenset({R.PURCHASED, R.NEGOTIATING}),
    R.REJECTED: frozenset(),
    R.EXPIRED: frozenset(),
    R.PURCHASED: frozenset(),
}

SLOT_TRANSITIONS: dict[S, frozenset[S]] = {
    S.PENDING: frozenset({S.ACTIVE, S.REJECTED}),
    S.ACTIVE: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REJECTED: frozenset(),
}

OPEN_REQUEST_STATUSES = (R.REQUESTED.value, R.NEGOTIATING.value)


def check_request(current: str, target: R) -> None:
    if target not in REQUEST_TRANSITIONS[R(current)]:
        raise InvalidTransition("guarantee_request", current, target.value)


def check_slot(current: str, target: S) -> None:
    if target not in SLOT_TRANSITIONS[S(current)]:
        raise InvalidTransition("guarantee_slot", current, target.value)


def total_with_vat(daily_amount: int, guarantee_count: int, vat_percent: int) -> int:
    base = daily_amount * guarantee_count
    return base + base * vat_percent // 100


def daily_settlement_amount(total_amount: int, guarantee_count: int, completed_count: int, user_holding: int) -> int:
    """Equal share per guaranteed day; the final day takes whatever is left so nothing is stranded."""
    if completed_count + 1 >= guarantee_count:
        return user_holding
    return min(user_holding, total_amount // guarantee_count)
