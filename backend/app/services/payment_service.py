"""Payment reconciliation for orders and appended orders.

A payment target is either the main ``Order`` or one ``AppendedOrder``.
Invariants maintained here:

* unpaid targets carry no payment fields at all;
* ``split`` payments must add up to the amount owed, within
  ``settings.split_payment_tolerance``;
* ``paid_amount`` is the target's own item total at the moment it was
  marked paid, independent of ``amount_received`` (which may include change).

When the main order is paid "whole order", every unpaid appended order is
settled in the same step.  For a split, the parent carries the full cash and
GCash amounts and the covered appended orders are recorded as ``split`` with
zero amounts, so the money is counted once.  Those covered orders follow the
parent: unpaying or re-paying the main order releases them.
"""

import logging
from typing import List, Optional, Union

from app.core.config import settings
from app.core.errors import SplitPaymentMismatchError, ValidationError
from app.core.money import round_money
from app.models.order import AppendedOrder, Order, PaymentMethod

logger = logging.getLogger(__name__)

PaymentTarget = Union[Order, AppendedOrder]


def is_covered_by_parent(appended: AppendedOrder) -> bool:
    """True if the appended order was settled through the parent's split payment."""
    return (
        appended.is_paid
        and appended.payment_method == PaymentMethod.SPLIT
        and not appended.cash_amount
        and not appended.gcash_amount
    )


def validate_split(cash_amount: Optional[float], gcash_amount: Optional[float],
                   expected_total: float) -> None:
    """Raise if ``cash + gcash`` differs from ``expected_total`` by the tolerance or more.

    Amounts are compared after rounding to the cent, so a one-centavo gap is
    already a mismatch while float noise below it is not.
    """
    if cash_amount is None or gcash_amount is None:
        raise ValidationError("cashAmount and gcashAmount are required for split payments")
    difference = abs(round(cash_amount + gcash_amount - expected_total, 2))
    if difference >= settings.split_payment_tolerance:
        raise SplitPaymentMismatchError(cash_amount, gcash_amount, expected_total)


def _record_paid(target: PaymentTarget, method: Optional[PaymentMethod],
                 cash_amount: Optional[float] = None, gcash_amount: Optional[float] = None,
                 amount_received: Optional[float] = None) -> None:
    target.is_paid = True
    target.payment_method = method
    if method == PaymentMethod.SPLIT:
        target.cash_amount = round_money(cash_amount or 0)
        target.gcash_amount = round_money(gcash_amount or 0)
    else:
        target.cash_amount = None
        target.gcash_amount = None
    target.paid_amount = target.items_total
    target.amount_received = round_money(amount_received) if amount_received is not None else None


class PaymentService:
    """Applies payment changes to an order aggregate in memory.

    Nothing is written until the caller commits, and every check runs before
    the first field is touched.
    """

    def set_payment(
        self,
        order: Order,
        target: PaymentTarget,
        is_paid: Optional[bool] = None,
        method: Optional[PaymentMethod] = None,
        cash_amount: Optional[float] = None,
        gcash_amount: Optional[float] = None,
        amount_received: Optional[float] = None,
        whole_order: bool = False,
    ) -> PaymentTarget:
        """Mark ``target`` paid or unpaid.

        ``is_paid=None`` toggles the current state.  ``whole_order`` only
        applies when ``target`` is the main order.  Appended orders covered by
        the main order's split follow the main order: unpaying or re-paying
        it releases them, and they cannot be changed on their own.
        """
        if target is not order and is_covered_by_parent(target):
            raise ValidationError(
                f"Appended order {target.id} is settled by the main order's split payment; "
                "change the main order's payment instead"
            )

        paid = (not target.is_paid) if is_paid is None else is_paid
        released: List[AppendedOrder] = []
        if target is order:
            released = [a for a in order.appended_orders if is_covered_by_parent(a)]

        if not paid:
            target.clear_payment()
            for appended in released:
                appended.clear_payment()
            logger.info(
                f"Order {order.id}: {self._label(order, target)} marked unpaid"
                f"{f', releasing {len(released)} appended' if released else ''}"
            )
            return target

        covered: List[AppendedOrder] = []
        if whole_order and target is order:
            covered = [a for a in order.appended_orders if not a.is_paid or is_covered_by_parent(a)]

        if method == PaymentMethod.SPLIT:
            validation_total = round(target.items_total + sum(a.items_total for a in covered), 2)
            validate_split(cash_amount, gcash_amount, validation_total)

        _record_paid(target, method, cash_amount, gcash_amount, amount_received)
        for appended in released:
            if appended not in covered:
                appended.clear_payment()
        for appended in covered:
            if method == PaymentMethod.SPLIT:
                _record_paid(appended, PaymentMethod.SPLIT, 0, 0)
            else:
                _record_paid(appended, method)

        logger.info(
            f"Order {order.id}: {self._label(order, target)} marked paid "
            f"({method.value if method else 'unspecified'}"
            f"{f', covering {len(covered)} appended' if covered else ''})"
        )
        return target

    def check_document(self, order: Order) -> None:
        """Validate and normalize payment state of a whole submitted document.

        Used for creates and offline replays where the payment fields arrive
        pre-filled rather than through ``set_payment``.  Covered appended
        orders without a paid split main order are reset to unpaid.
        """
        parent_split = order.is_paid and order.payment_method == PaymentMethod.SPLIT
        for appended in order.appended_orders:
            self._normalize(appended)
            if is_covered_by_parent(appended):
                if not parent_split:
                    appended.clear_payment()
                continue
            if appended.payment_method == PaymentMethod.SPLIT and appended.is_paid:
                validate_split(appended.cash_amount, appended.gcash_amount, appended.items_total)

        self._normalize(order)
        if parent_split:
            covered_total = sum(a.items_total for a in order.appended_orders if is_covered_by_parent(a))
            validate_split(order.cash_amount, order.gcash_amount,
                           round(order.items_total + covered_total, 2))

    @staticmethod
    def _normalize(target: PaymentTarget) -> None:
        if not target.is_paid:
            target.clear_payment()
            return
        if target.payment_method != PaymentMethod.SPLIT:
            target.cash_amount = None
            target.gcash_amount = None
        if target.paid_amount is None:
            target.paid_amount = target.items_total

    @staticmethod
    def _label(order: Order, target: PaymentTarget) -> str:
        return "main order" if target is order else f"appended order {target.id}"
