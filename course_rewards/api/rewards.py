"""Reward status, retry, claim and on-chain read endpoints.

Reward status is read straight from the ledger and never cached: it
changes in the background as chain transactions confirm.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from course_rewards.api.dependencies import ServicesDep
from course_rewards.core.errors import (
    ChainError,
    InvalidAddressError,
    RetryNotAllowedError,
    UnknownCourseError,
    UnknownStudentError,
)
from course_rewards.models.reward import RewardRecord

router = APIRouter(prefix="/v1", tags=["rewards"])


class RewardOut(BaseModel):
    student_id: str
    course_id: str
    status: str  # pending|off-chain-credited|on-chain-submitted|on-chain-confirmed|failed|not-awarded
    amount: int = 0
    transaction_ref: str | None = None
    block_number: int | None = None
    error_kind: str | None = None
    error_message: str | None = None
    attempts: int = 0
    created_at: int | None = None
    updated_at: int | None = None


class ChainStatusOut(BaseModel):
    student_id: str
    course_id: str
    on_chain: bool


class SweepOut(BaseModel):
    examined: int
    settled: int


def _reward_out(record: RewardRecord) -> RewardOut:
    return RewardOut(
        student_id=str(record.student_id),
        course_id=str(record.course_id),
        status=record.status,
        amount=record.amount,
        transaction_ref=record.transaction_ref,
        block_number=record.block_number,
        error_kind=record.error_kind,
        error_message=record.error_message,
        attempts=record.attempts,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


@router.get("/students/{student_id}/rewards", response_model=list[RewardOut])
async def list_rewards(student_id: UUID, services: ServicesDep) -> list[RewardOut]:
    return [_reward_out(r) for r in await services.ledger.list_rewards(student_id)]


@router.get("/students/{student_id}/rewards/{course_id}", response_model=RewardOut)
async def get_reward(student_id: UUID, course_id: UUID, services: ServicesDep) -> RewardOut:
    record = await services.ledger.get_reward_status(student_id, course_id)
    if record is None:
        return RewardOut(
            student_id=str(student_id), course_id=str(course_id), status="not-awarded"
        )
    return _reward_out(record)


@router.post(
    "/students/{student_id}/rewards/{course_id}/retry",
    response_model=RewardOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retry_reward(student_id: UUID, course_id: UUID, services: ServicesDep) -> RewardOut:
    """Re-submit a failed reward.  The chain is checked first, so a
    transaction that landed after we gave up resolves to confirmed."""
    try:
        record = await services.ledger.retry_award(student_id, course_id)
    except RetryNotAllowedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except UnknownStudentError:
        raise HTTPException(status_code=404, detail="student not found") from None
    except InvalidAddressError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from None
    return _reward_out(record)


@router.post("/students/{student_id}/rewards/{course_id}/claim", response_model=RewardOut)
async def claim_reward(student_id: UUID, course_id: UUID, services: ServicesDep) -> RewardOut:
    """Award a completed course that has no reward yet, typically because
    the wallet was linked after completion.  Returns the existing record
    if there already is one."""
    enrollment = await services.tracker.get_enrollment(student_id, course_id)
    if enrollment is None:
        raise HTTPException(status_code=404, detail="not enrolled in this course")
    if not enrollment.is_complete:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="course not completed")
    try:
        record = await services.completions.claim(student_id, course_id)
    except UnknownCourseError:
        raise HTTPException(status_code=404, detail="course not found") from None
    except UnknownStudentError:
        raise HTTPException(status_code=404, detail="student not found") from None
    except InvalidAddressError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from None
    if record is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="course not completed")
    return _reward_out(record)


@router.get("/students/{student_id}/rewards/{course_id}/chain", response_model=ChainStatusOut)
async def read_chain_status(
    student_id: UUID, course_id: UUID, services: ServicesDep
) -> ChainStatusOut:
    try:
        on_chain = await services.reconciler.read_award_status(student_id, course_id)
    except UnknownStudentError:
        raise HTTPException(status_code=404, detail="student not found") from None
    except UnknownCourseError:
        raise HTTPException(status_code=404, detail="course not found") from None
    except InvalidAddressError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="student has no wallet address",
        ) from None
    except ChainError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"chain unavailable: {e}"
        ) from None
    return ChainStatusOut(student_id=str(student_id), course_id=str(course_id), on_chain=on_chain)


@router.post("/rewards/reconcile", response_model=SweepOut)
async def reconcile_rewards(services: ServicesDep) -> SweepOut:
    """Run one reconciliation sweep over every unsettled reward."""
    unsettled = await services.ledger.list_unsettled()
    settled = await services.reconciler.sweep(unsettled)
    return SweepOut(examined=len(unsettled), settled=settled)
