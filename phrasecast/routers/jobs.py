"""
Job endpoints for TTS synthesis.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from phrasecast.database import get_db
from phrasecast.dependencies import get_current_user_id, get_job_processor
from phrasecast.models import Job, JobStatus, SynthesisResult
from phrasecast.schemas.job import (
    JobCreate,
    JobResponse,
    JobListResponse,
    SweepResponse,
    SynthesisResultResponse,
)
from phrasecast.services.job_processor import JobProcessor


router = APIRouter(prefix='/jobs', tags=['jobs'])


async def _results_for(db: AsyncSession, job: Job) -> List[SynthesisResultResponse]:
    # Audio is only exposed once the job has succeeded
    if job.status != JobStatus.succeeded.value:
        return []
    result = await db.execute(
        select(SynthesisResult)
        .where(SynthesisResult.job_id == job.id)
        .order_by(SynthesisResult.phrase_index)
    )
    return [SynthesisResultResponse.model_validate(r) for r in result.scalars().all()]


async def _to_response(db: AsyncSession, job: Job) -> JobResponse:
    response = JobResponse.model_validate(job)
    response.results = await _results_for(db, job)
    return response


@router.get('', response_model=JobListResponse)
async def list_jobs(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> JobListResponse:
    """
    List the caller's jobs with pagination.

    Returns jobs ordered by creation time (newest first).
    """
    count_result = await db.execute(select(func.count(Job.id)).where(Job.user_id == user_id))
    total = count_result.scalar()

    result = await db.execute(
        select(Job)
        .where(Job.user_id == user_id)
        .order_by(Job.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    jobs = result.scalars().all()

    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post('', response_model=JobResponse, status_code=201)
async def create_job(
    job_data: JobCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    processor: JobProcessor = Depends(get_job_processor),
) -> JobResponse:
    """
    Create a new TTS synthesis job.

    Returns immediately with job ID and queued status.
    Job is processed asynchronously in the background.
    """
    job = Job(
        user_id=user_id,
        phrases=[p.model_dump() for p in job_data.phrases],
        status=JobStatus.queued.value,
        attempt_count=0,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)

    await processor.enqueue(job.id)

    return JobResponse.model_validate(job)


@router.post('/process-queued', response_model=SweepResponse)
async def process_queued_jobs(
    user_id: str = Depends(get_current_user_id),
    processor: JobProcessor = Depends(get_job_processor),
) -> SweepResponse:
    """
    Run one pass over claimable jobs now.

    For schedulers (cron) that drive processing instead of the in-process sweep.
    """
    outcomes = await processor.run_sweep()
    claimed = [o for o in outcomes if o.claimed and not o.claim_lost]
    return SweepResponse(
        processed=len(claimed),
        succeeded=sum(1 for o in claimed if o.status == JobStatus.succeeded),
        failed=sum(1 for o in claimed if o.status == JobStatus.failed),
        requeued=sum(1 for o in claimed if o.status == JobStatus.queued),
        skipped=len(outcomes) - len(claimed),
    )


@router.get('/{job_id}', response_model=JobResponse)
async def get_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """
    Get details for a specific job.

    Returns status and error code; the per-phrase results once succeeded.
    """
    result = await db.execute(select(Job).where(Job.id == job_id, Job.user_id == user_id))
    job = result.scalar_one_or_none()

    if not job:
        raise HTTPException(status_code=404, detail=f'Job not found: {job_id}')

    return await _to_response(db, job)
