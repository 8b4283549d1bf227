"""Order status state machine.

``pending -> confirmed -> processing -> shipped -> out_for_delivery ->
delivered``, with ``cancelled`` reachable from every non-terminal state.
Admins may move an order between any non-terminal states; terminal orders
only accept their current status again (a no-op).
"""

from dataclasses import dataclass

from .domain import InvalidPaymentStatus, InvalidStatus, InvalidTransition, OrderStatus, PaymentStatus

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Legacy input naming: "processing" means the order was accepted.
STATUS_ALIASES = {"processing": OrderStatus.CONFIRMED}

VALID_STATUS_VALUES = [s.value for s in OrderStatus]
VALID_PAYMENT_STATUS_VALUES = [s.value for s in PaymentStatus]


@dataclass(frozen=True)
class Transition:
    old: OrderStatus
    new: OrderStatus

    @property
    def changed(self) -> bool:
        return self.old != self.new

    @property
    def cancels(self) -> bool:
        return self.changed and self.new == OrderStatus.CANCELLED


def normalize_status(raw) -> OrderStatus:
    """Map admin input to a stored status, case-insensitively.

    Raises:
        InvalidStatus: For anything outside the known set.
    """
    value = str(raw).strip().lower() if raw is not None else ""
    if value in STATUS_ALIASES:
        return STATUS_ALIASES[value]
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStatus(raw, VALID_STATUS_VALUES) from None


def normalize_payment_status(raw) -> PaymentStatus:
    value = str(raw).strip().lower() if raw is not None else ""
    try:
        return PaymentStatus(value)
    except ValueError:
        raise InvalidPaymentStatus(raw, VALID_PAYMENT_STATUS_VALUES) from None


def plan_transition(current: OrderStatus, target: OrderStatus) -> Transition:
    """Validate moving from ``current`` to ``target``.

    Raises:
        InvalidTransition: When leaving a terminal status.
    """
    if current in TERMINAL_STATUSES and target != current:
        raise InvalidTransition(current, target)
    return Transition(old=current, new=target)
