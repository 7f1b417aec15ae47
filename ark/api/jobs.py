from __future__ import annotations

from fastapi import APIRouter, Depends

from ark.api.deps import get_job_runner
from ark.services.job_runner import JobRunner

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("")
def list_jobs(job_runner: JobRunner = Depends(get_job_runner)):
    jobs = job_runner.list_jobs()
    return {"jobs": jobs, "total": len(jobs)}
