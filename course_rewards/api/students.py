"""Student registration, wallet linking and token balance."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from course_rewards.api.dependencies import ServicesDep
from course_rewards.models.student import Student, is_valid_address

router = APIRouter(prefix="/v1/students", tags=["students"])


class StudentIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    wallet_address: str | None = None


class WalletIn(BaseModel):
    wallet_address: str


class StudentOut(BaseModel):
    id: str
    name: str
    wallet_address: str | None


class BalanceOut(BaseModel):
    student_id: str
    earned: int
    unsettled: int
    rewarded_courses: int


def _student_out(student: Student) -> StudentOut:
    return StudentOut(
        id=str(student.id), name=student.name, wallet_address=student.wallet_address
    )


def _check_address(address: str) -> None:
    if not is_valid_address(address):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="wallet_address must be a 0x-prefixed 20-byte hex address",
        )


@router.post("", response_model=StudentOut, status_code=status.HTTP_201_CREATED)
async def register_student(body: StudentIn, services: ServicesDep) -> StudentOut:
    if body.wallet_address is not None:
        _check_address(body.wallet_address)
    student = Student.new(name=body.name, wallet_address=body.wallet_address)
    await services.students.add(student)
    return _student_out(student)


@router.get("/{student_id}", response_model=StudentOut)
async def get_student(student_id: UUID, services: ServicesDep) -> StudentOut:
    student = await services.students.get(student_id)
    if student is None:
        raise HTTPException(status_code=404, detail="student not found")
    return _student_out(student)


@router.put("/{student_id}/wallet", response_model=StudentOut)
async def link_wallet(student_id: UUID, body: WalletIn, services: ServicesDep) -> StudentOut:
    """Link (or replace) the wallet rewards are sent to.

    Rewards already confirmed on chain stay with the previous address.
    """
    _check_address(body.wallet_address)
    student = await services.students.set_wallet(student_id, body.wallet_address)
    if student is None:
        raise HTTPException(status_code=404, detail="student not found")
    return _student_out(student)


@router.get("/{student_id}/balance", response_model=BalanceOut)
async def get_balance(student_id: UUID, services: ServicesDep) -> BalanceOut:
    if await services.students.get(student_id) is None:
        raise HTTPException(status_code=404, detail="student not found")
    balance = await services.ledger.get_balance(student_id)
    return BalanceOut(
        student_id=str(balance.student_id),
        earned=balance.earned,
        unsettled=balance.unsettled,
        rewarded_courses=balance.rewarded_courses,
    )
