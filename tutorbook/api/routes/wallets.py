"""
Hour Wallet API Endpoints

GET  /api/v1/hour-wallets                        - All wallets (staff) or own (student)
GET  /api/v1/hour-wallets/{wallet_id}            - Wallet with balance
GET  /api/v1/hour-wallets/{wallet_id}/transactions - Ledger history
POST /api/v1/hour-wallets                        - Add minutes (manager/admin)
POST /api/v1/hour-wallets/allocate               - Split hours across courses (manager/admin)
"""
import uuid
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Path, status
from pydantic import BaseModel, Field

from tutorbook.api.auth import CurrentUser, get_current_user, require_roles
from tutorbook.api.schemas import WalletRead, WalletTransactionRead
from tutorbook.errors import ForbiddenError
from tutorbook.models.user import UserRole
from tutorbook.services.wallet_ledger import MAX_ADD_MINUTES, MIN_ADD_MINUTES, get_wallet_ledger

router = APIRouter(prefix="/api/v1/hour-wallets", tags=["wallets"])


class AddMinutesRequest(BaseModel):
    student_id: uuid.UUID
    course_id: uuid.UUID
    minutes: int = Field(..., ge=MIN_ADD_MINUTES, le=MAX_ADD_MINUTES)
    note: Optional[str] = Field(None, max_length=500)


class AllocationRequest(BaseModel):
    student_id: uuid.UUID
    total_hours: float = Field(..., gt=0)
    allocations: Dict[uuid.UUID, float] = Field(..., min_length=1)
    note: Optional[str] = Field(None, max_length=500)


async def _visible_wallet(wallet_id: uuid.UUID, user: CurrentUser):
    wallet = await get_wallet_ledger().get_wallet(wallet_id)
    if not user.is_staff and wallet.student_id != user.id:
        raise ForbiddenError("You can only view your own wallets")
    return wallet


@router.get("", response_model=List[WalletRead])
async def list_wallets(user: CurrentUser = Depends(get_current_user)):
    if user.is_staff:
        return await get_wallet_ledger().list_wallets()
    if user.role == UserRole.STUDENT:
        return await get_wallet_ledger().list_wallets(student_id=user.id)
    raise ForbiddenError("Only students and staff can view hour wallets")


@router.get("/{wallet_id}", response_model=WalletRead)
async def get_wallet(
    wallet_id: uuid.UUID = Path(..., description="Wallet id"),
    user: CurrentUser = Depends(get_current_user),
):
    return await _visible_wallet(wallet_id, user)


@router.get("/{wallet_id}/transactions", response_model=List[WalletTransactionRead])
async def list_wallet_transactions(
    wallet_id: uuid.UUID = Path(..., description="Wallet id"),
    user: CurrentUser = Depends(get_current_user),
):
    await _visible_wallet(wallet_id, user)
    return await get_wallet_ledger().list_transactions(wallet_id)


@router.post("", response_model=WalletRead, status_code=status.HTTP_201_CREATED)
async def add_minutes(
    payload: AddMinutesRequest,
    user: CurrentUser = Depends(require_roles([UserRole.MANAGER])),
):
    """Credit purchased minutes, creating the wallet if needed."""
    return await get_wallet_ledger().add_minutes(
        payload.student_id, payload.course_id, payload.minutes, note=payload.note
    )


@router.post("/allocate", response_model=List[WalletRead], status_code=status.HTTP_201_CREATED)
async def allocate_hours(
    payload: AllocationRequest,
    user: CurrentUser = Depends(require_roles([UserRole.MANAGER])),
):
    """Split a block of hours across course wallets; parts must sum to the total."""
    return await get_wallet_ledger().allocate(
        payload.student_id, payload.total_hours, payload.allocations, note=payload.note
    )
