"""Wallet Maintenance Script - open missing wallets and reconcile balances against the log.

Usage:
    # Open a wallet (with sign-up credits) for every user that has none
    uv run python -m credit_escrow.scripts.wallet_maintenance --action open

    # Same, with a custom grant
    uv run python -m credit_escrow.scripts.wallet_maintenance --action open --credits 50

    # Report wallets whose cached balances disagree with their transaction log
    uv run python -m credit_escrow.scripts.wallet_maintenance --action reconcile

Options:
    --action: open, reconcile
    --credits: Credits granted to each new wallet (default: settings.signup_bonus_credits)
"""

import argparse
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from credit_escrow.db.engine import close_db, get_session
from credit_escrow.models.user import User
from credit_escrow.models.wallet import Wallet
from credit_escrow.schemas.ledger import WalletReconciliationResponse
from credit_escrow.services.ledger_service import LedgerService
from credit_escrow.services.wallet_service import WalletService

logger = logging.getLogger(__name__)


async def open_missing_wallets(db: AsyncSession, credits: int | None = None) -> list[Wallet]:
    """Open a wallet for every active user without one."""
    result = await db.execute(
        select(User)
        .outerjoin(Wallet, Wallet.user_id == User.id)
        .where(Wallet.id.is_(None), User.is_active == True)  # noqa: E712
        .order_by(User.id)
    )
    users = result.scalars().all()

    service = WalletService(db)
    return [await service.open_wallet(user.id, credits) for user in users]


async def find_inconsistent_wallets(db: AsyncSession) -> list[WalletReconciliationResponse]:
    """Reconcile every wallet and return the ones that do not match their log."""
    result = await db.execute(select(Wallet).order_by(Wallet.id))
    ledger = LedgerService(db)

    mismatched = []
    for wallet in result.scalars().all():
        report = await ledger.reconcile(wallet)
        if not report.consistent:
            logger.warning(
                "Wallet %s out of balance: available %s vs log %s, outgoing %s vs log %s",
                wallet.id,
                report.available_balance,
                report.ledger_available,
                report.outgoing_balance,
                report.ledger_outgoing,
            )
            mismatched.append(report)
    return mismatched


async def open_action(credits: int | None) -> None:
    """Open wallets for users that have none."""
    print("\nOpening missing wallets...")

    async with get_session() as db:
        wallets = await open_missing_wallets(db, credits)

        if wallets:
            print(f"✅ Opened {len(wallets)} wallets")
            for wallet in wallets:
                print(f"  - Wallet #{wallet.id}: user {wallet.user_id}, {wallet.available_balance} credits")
        else:
            print("ℹ️  Every user already has a wallet")


async def reconcile_action() -> None:
    """Check cached balances against the transaction log."""
    print("\nReconciling wallets...")

    async with get_session() as db:
        mismatched = await find_inconsistent_wallets(db)

        if not mismatched:
            print("✅ All wallets match their transaction log")
            return

        print(f"❌ {len(mismatched)} wallets out of balance:")
        for report in mismatched:
            print(
                f"  - Wallet #{report.wallet_id}: "
                f"available {report.available_balance} (log {report.ledger_available}), "
                f"outgoing {report.outgoing_balance} (log {report.ledger_outgoing})"
            )


async def main(args: argparse.Namespace) -> None:
    """Main entry point."""
    try:
        if args.action == "open":
            await open_action(credits=args.credits)
        elif args.action == "reconcile":
            await reconcile_action()
        else:
            print(f"Unknown action: {args.action}")
    finally:
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Wallet maintenance script")
    parser.add_argument(
        "--action",
        type=str,
        choices=["open", "reconcile"],
        required=True,
        help="Action to perform",
    )
    parser.add_argument(
        "--credits",
        type=int,
        default=None,
        help="Credits granted to each new wallet",
    )

    asyncio.run(main(parser.parse_args()))
