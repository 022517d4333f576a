"""Wallet Service - escrow primitives over the per-user credit wallet.

The primitives only mutate the loaded ``Wallet`` rows. They never commit:
callers run them inside one ``transactional()`` block together with the
transaction-log entries and the request/session rows they belong to, so a
failure anywhere rolls the whole unit back.
"""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from credit_escrow.core.config import get_settings
from credit_escrow.core.exceptions import (
    ConflictError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from credit_escrow.db.engine import transactional
from credit_escrow.models.ledger import CreditTransaction, TransactionStatus, TransactionType
from credit_escrow.models.user import User
from credit_escrow.models.wallet import Wallet

logger = logging.getLogger(__name__)


class WalletService:
    """Service for wallet balances and escrow movements."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ============ Lookup ============

    async def get_wallet(self, user_id: int) -> Wallet | None:
        """Get a user's wallet without locking it."""
        result = await self.db.execute(select(Wallet).where(Wallet.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_wallet_for_update(self, user_id: int) -> Wallet:
        """Load a user's wallet under a row lock.

        Balances are re-read from the database even if the row is already in
        the session, so checks always see the committed values.

        Raises:
            NotFoundError: User has no wallet
        """
        result = await self.db.execute(
            select(Wallet)
            .where(Wallet.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        wallet = result.scalar_one_or_none()
        if wallet is None:
            raise NotFoundError("Wallet not found", {"user_id": user_id})
        return wallet

    async def lock_wallets(self, *user_ids: int) -> dict[int, Wallet]:
        """Lock several wallets in ascending user ID order.

        A fixed lock order keeps two transfers between the same pair of users
        from deadlocking each other.

        Returns:
            Mapping of user ID to locked wallet
        """
        wallets: dict[int, Wallet] = {}
        for user_id in sorted(set(user_ids)):
            wallets[user_id] = await self.get_wallet_for_update(user_id)
        return wallets

    # ============ Bootstrap ============

    async def open_wallet(self, user_id: int, initial_credits: int | None = None) -> Wallet:
        """Create a wallet for a new user and grant the sign-up credits.

        The grant is written to the transaction log so the wallet's balance
        can always be rebuilt from its entries.

        Args:
            user_id: Owner of the wallet
            initial_credits: Credits to grant (defaults to settings.signup_bonus_credits)

        Returns:
            The new wallet

        Raises:
            NotFoundError: User does not exist
            ConflictError: User already has a wallet
        """
        if initial_credits is None:
            initial_credits = get_settings().signup_bonus_credits
        self._check_amount(initial_credits)

        async with transactional(self.db):
            if await self.db.get(User, user_id) is None:
                raise NotFoundError("User not found", {"user_id": user_id})
            if await self.get_wallet(user_id) is not None:
                raise ConflictError("Wallet already exists", {"user_id": user_id})

            wallet = Wallet(user_id=user_id, available_balance=initial_credits)
            self.db.add(wallet)
            await self.db.flush()

            if initial_credits:
                self.db.add(
                    CreditTransaction(
                        wallet_id=wallet.id,
                        amount=initial_credits,
                        type=TransactionType.SIGNUP_BONUS,
                        status=TransactionStatus.COMPLETED,
                        note=f"Welcome bonus - {initial_credits} credits",
                    )
                )

        logger.info("Opened wallet %s for user %s with %s credits", wallet.id, user_id, initial_credits)
        return wallet

    # ============ Escrow primitives ============

    async def reserve(self, wallet: Wallet, amount: int, message: str | None = None) -> Wallet:
        """Move credits from available into outgoing (escrow).

        Args:
            wallet: Locked wallet
            amount: Credits to escrow
            message: Error message shown when the wallet cannot cover ``amount``

        Raises:
            InsufficientFundsError: available_balance < amount; nothing is changed
        """
        self._check_amount(amount)
        if wallet.available_balance < amount:
            raise InsufficientFundsError(
                required=amount,
                available=wallet.available_balance,
                message=message or f"Insufficient credits. {amount} credits are required.",
            )

        wallet.available_balance -= amount
        wallet.outgoing_balance += amount
        return self._touch(wallet)

    async def release(self, wallet: Wallet, amount: int) -> Wallet:
        """Move escrowed credits back from outgoing into available (refund path)."""
        self._check_escrow(wallet, amount)
        wallet.outgoing_balance -= amount
        wallet.available_balance += amount
        return self._touch(wallet)

    async def settle(self, wallet: Wallet, amount: int) -> Wallet:
        """Remove escrowed credits from outgoing.

        Pair with ``credit()`` on the counterparty's wallet in the same unit of work.
        """
        self._check_escrow(wallet, amount)
        wallet.outgoing_balance -= amount
        return self._touch(wallet)

    async def credit(self, wallet: Wallet, amount: int) -> Wallet:
        """Add credits straight to available."""
        self._check_amount(amount)
        wallet.available_balance += amount
        return self._touch(wallet)

    # ============ Helpers ============

    def _touch(self, wallet: Wallet) -> Wallet:
        wallet.updated_at = datetime.utcnow()
        self.db.add(wallet)
        return wallet

    @staticmethod
    def _check_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValidationError("Credit amounts must be non-negative integers", {"amount": amount})

    def _check_escrow(self, wallet: Wallet, amount: int) -> None:
        self._check_amount(amount)
        if wallet.outgoing_balance < amount:
            # Escrow is always reserved before it is settled or released, so
            # this means the ledger and the request/session rows disagree.
            raise InvalidStateError(
                "Escrowed credits are lower than the amount being moved",
                {"wallet_id": wallet.id, "outgoing": wallet.outgoing_balance, "amount": amount},
            )
