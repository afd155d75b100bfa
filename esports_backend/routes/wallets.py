"""
esports_backend/routes/wallets.py
Wallet balance, ledger, and gateway-confirmed deposits.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from esports_backend.database import get_db
from esports_backend.rbac import ActorContext, ActorRole, ensure_role, get_actor
from esports_backend.schemas.tournament import DepositRequest
from esports_backend.services import wallet_service

router = APIRouter(prefix="/api/wallets", tags=["Wallets"])


@router.get("/me")
async def my_wallet(
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    balance = await wallet_service.get_balance(db, actor.user_id)
    return {"success": True, "user_id": actor.user_id, "balance": str(balance)}


@router.get("/me/transactions")
async def my_transactions(
    limit: int = Query(50, ge=1, le=200),
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    transactions = await wallet_service.list_transactions(db, actor.user_id, limit=limit)
    return {"success": True, "transactions": [tx.to_dict() for tx in transactions]}


@router.post("/{user_id}/deposit")
async def deposit(
    user_id: int,
    body: DepositRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """Admin-only: records a top-up the payment gateway already settled."""
    ensure_role(actor, ActorRole.ADMIN)
    tx = await wallet_service.deposit(db, user_id, body.amount)
    await db.commit()
    return {"success": True, "transaction": tx.to_dict()}
