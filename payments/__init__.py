"""Payment bookkeeping.

Payments themselves happen on-chain; this module only records them, marks
the paying member as paid once a payment completes and notifies the
receiver. It also sends payment reminders.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
from uuid import UUID

from config import settings_conf
from database import get_store
from errors import ValidationError, NotFoundError, ForbiddenError
from models import PaymentStatus, PaymentReminderContent, PaymentReceivedContent
from notifications import NotificationManager

logger = logging.getLogger(__name__)


def _to_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be positive")
    return amount


class PaymentManager:
    """Manager class for payment records and reminders."""

    def __init__(self, store=None, notifications: Optional[NotificationManager] = None):
        self.store = store
        self.notifications = notifications or NotificationManager(store)

    async def ensure_store(self):
        """Ensure we have a row store shared with the outbox."""
        if not self.store:
            self.store = await get_store()
        self.notifications.store = self.notifications.store or self.store

    async def _context(self, tx, subscription_id: UUID, sender_id: UUID, receiver_id: UUID):
        """Load the subscription and sender, checking both parties are members."""
        subscription = await tx.find_one('subscriptions', {'id': subscription_id})
        if not subscription:
            raise NotFoundError("Subscription not found")
        if sender_id == receiver_id:
            raise ValidationError("Sender and receiver must differ")
        members = await tx.find_many('subscription_members', {
            'subscription_id': subscription_id,
            'user_id': [sender_id, receiver_id]
        })
        if len(members) != 2:
            raise ForbiddenError("Both parties must be members of the subscription")
        sender = await tx.find_one('users', {'id': sender_id})
        return subscription, sender

    async def _complete(self, tx, payment: Dict[str, Any]) -> None:
        subscription, sender = await self._context(
            tx, payment['subscription_id'], payment['sender_id'], payment['receiver_id']
        )
        await tx.update('subscription_members', {
            'subscription_id': payment['subscription_id'],
            'user_id': payment['sender_id']
        }, {'paid': True})
        await self.notifications.append(tx, payment['receiver_id'], PaymentReceivedContent(
            sender_id=payment['sender_id'],
            sender_username=sender['username'],
            sender_wallet_address=sender['wallet_address'],
            subscription_id=payment['subscription_id'],
            subscription_name=subscription['name'],
            amount=payment['amount'],
            transaction_hash=payment['transaction_hash']
        ))

    async def record_payment(
        self,
        subscription_id: UUID,
        sender_id: UUID,
        receiver_id: UUID,
        amount: Any,
        currency: Optional[str] = None,
        transaction_hash: Optional[str] = None,
        guard=None
    ) -> Dict[str, Any]:
        """Record a payment from one member to another.

        A payment carrying a transaction hash is recorded as completed:
        the sender is marked as paid and the receiver is notified.

        Raises:
            ValidationError: If the amount is not positive
            NotFoundError: If the subscription does not exist
            ForbiddenError: If either party is not a member
        """
        await self.ensure_store()
        amount = _to_amount(amount)
        currency = (currency or settings_conf.get('default_currency', 'USD')).upper()

        async with self.store.transaction() as tx:
            await self._context(tx, subscription_id, sender_id, receiver_id)
            status = PaymentStatus.COMPLETED if transaction_hash else PaymentStatus.PENDING
            payment = await tx.insert('payments', {
                'subscription_id': subscription_id,
                'sender_id': sender_id,
                'receiver_id': receiver_id,
                'amount': amount,
                'currency': currency,
                'status': status.value,
                'transaction_hash': transaction_hash
            })
            if status == PaymentStatus.COMPLETED:
                await self._complete(tx, payment)
            if guard:
                await guard.check()

        logger.info(f"Recorded {status.value} payment {payment['id']} of {amount} {currency}")
        return payment

    async def update_status(
        self,
        payment_id: UUID,
        status: str,
        transaction_hash: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        guard=None
    ) -> Dict[str, Any]:
        """Move a pending payment to completed or failed.

        Raises:
            ValidationError: If the status is unknown or the payment is settled
            NotFoundError: If the payment does not exist
            ForbiddenError: If an actor is given who is not a party to the payment
        """
        await self.ensure_store()
        try:
            status = PaymentStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown payment status: {status}")
        if status == PaymentStatus.PENDING:
            raise ValidationError("A payment can only move to completed or failed")

        async with self.store.transaction() as tx:
            payment = await tx.lock('payments', {'id': payment_id})
            if not payment:
                raise NotFoundError("Payment not found")
            if actor_id is not None and actor_id not in (payment['sender_id'], payment['receiver_id']):
                raise ForbiddenError("Not a party to this payment")
            if payment['status'] != PaymentStatus.PENDING.value:
                raise ValidationError("Payment is already settled")

            patch: Dict[str, Any] = {'status': status.value}
            if transaction_hash:
                patch['transaction_hash'] = transaction_hash
            payment = (await tx.update('payments', {'id': payment_id}, patch))[0]
            if status == PaymentStatus.COMPLETED:
                await self._complete(tx, payment)
            if guard:
                await guard.check()

        logger.info(f"Payment {payment_id} is now {status.value}")
        return payment

    async def send_reminder(
        self,
        subscription_id: UUID,
        sender_id: UUID,
        receiver_id: UUID,
        amount: Any,
        guard=None
    ) -> Dict[str, Any]:
        """Remind a member that they owe an amount.

        Returns:
            The reminder notification
        """
        await self.ensure_store()
        amount = _to_amount(amount)
        async with self.store.transaction() as tx:
            subscription, sender = await self._context(tx, subscription_id, sender_id, receiver_id)
            notification = await self.notifications.append(tx, receiver_id, PaymentReminderContent(
                sender_id=sender_id,
                sender_username=sender['username'],
                sender_wallet_address=sender['wallet_address'],
                subscription_id=subscription_id,
                subscription_name=subscription['name'],
                amount=amount
            ))
            if guard:
                await guard.check()
        return notification

    async def history(self, user_id: UUID) -> List[Dict[str, Any]]:
        """Get payments a user sent or received, newest first."""
        await self.ensure_store()
        async with self.store.transaction() as tx:
            sent = await tx.find_many('payments', {'sender_id': user_id})
            received = await tx.find_many('payments', {'receiver_id': user_id})
        return sorted(sent + received, key=lambda p: p['created_at'], reverse=True)


__all__ = ['PaymentManager']
