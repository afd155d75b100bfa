import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from esports_backend.exceptions import InsufficientBalanceError, ValidationError
from esports_backend.orm.wallet import Wallet, WalletTransaction, TransactionType

logger = logging.getLogger(__name__)


async def get_or_create_wallet(db: AsyncSession, user_id: int) -> Wallet:
    result = await db.execute(select(Wallet).where(Wallet.user_id == user_id))
    wallet = result.scalar_one_or_none()
    if wallet is None:
        wallet = Wallet(user_id=user_id, balance=Decimal("0.00"))
        db.add(wallet)
        await db.flush()
    return wallet


async def get_balance(db: AsyncSession, user_id: int) -> Decimal:
    """Current balance; users without a wallet have 0."""
    result = await db.execute(select(Wallet.balance).where(Wallet.user_id == user_id))
    balance = result.scalar_one_or_none()
    return Decimal(balance) if balance is not None else Decimal("0.00")


async def _record(
    db: AsyncSession,
    wallet: Wallet,
    tx_type: TransactionType,
    amount: Decimal,
    tournament_id: Optional[int],
    description: Optional[str]
) -> WalletTransaction:
    await db.refresh(wallet)
    tx = WalletTransaction(
        wallet_id=wallet.id,
        user_id=wallet.user_id,
        tournament_id=tournament_id,
        type=tx_type.value,
        amount=amount,
        balance_after=wallet.balance,
        description=description,
    )
    db.add(tx)
    await db.flush()
    return tx


async def credit(
    db: AsyncSession,
    user_id: int,
    amount: Decimal,
    tx_type: TransactionType,
    tournament_id: Optional[int] = None,
    description: Optional[str] = None
) -> WalletTransaction:
    """Add funds (prize, refund, deposit) and write the ledger row."""
    amount = Decimal(amount)
    if amount <= 0:
        raise ValidationError("Credit amount must be positive", details={"amount": str(amount)})

    wallet = await get_or_create_wallet(db, user_id)
    await db.execute(
        update(Wallet)
        .where(Wallet.id == wallet.id)
        .values(balance=Wallet.balance + amount)
        .execution_options(synchronize_session=False)
    )
    tx = await _record(db, wallet, tx_type, amount, tournament_id, description)
    logger.info(f"Credited {amount} to user {user_id} ({tx_type.value}), balance {tx.balance_after}")
    return tx


async def debit(
    db: AsyncSession,
    user_id: int,
    amount: Decimal,
    tx_type: TransactionType,
    tournament_id: Optional[int] = None,
    description: Optional[str] = None
) -> WalletTransaction:
    """
    Remove funds, failing if the balance would go negative.

    The balance check and the deduction are one conditional UPDATE, so two
    concurrent debits can't both pass the check.

    Raises:
        InsufficientBalanceError: balance < amount
    """
    amount = Decimal(amount)
    if amount < 0:
        raise ValidationError("Debit amount must be non-negative", details={"amount": str(amount)})

    wallet = await get_or_create_wallet(db, user_id)
    result = await db.execute(
        update(Wallet)
        .where(Wallet.id == wallet.id, Wallet.balance >= amount)
        .values(balance=Wallet.balance - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        balance = await get_balance(db, user_id)
        logger.warning(f"User {user_id} balance {balance} below required {amount}")
        raise InsufficientBalanceError(
            f"User {user_id} has insufficient balance",
            details={"user_id": user_id, "balance": str(balance), "required": str(amount)}
        )

    tx = await _record(db, wallet, tx_type, -amount, tournament_id, description)
    logger.info(f"Debited {amount} from user {user_id} ({tx_type.value}), balance {tx.balance_after}")
    return tx


async def deposit(db: AsyncSession, user_id: int, amount: Decimal) -> WalletTransaction:
    """Top-up confirmed by the payment gateway."""
    return await credit(db, user_id, amount, TransactionType.DEPOSIT, description="Wallet top-up")


async def list_transactions(db: AsyncSession, user_id: int, limit: int = 50) -> List[WalletTransaction]:
    result = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.user_id == user_id)
        .order_by(WalletTransaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
