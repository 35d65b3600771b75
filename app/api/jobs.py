from typing import Optional

from fastapi import APIRouter, Depends

from app.api.deps import get_job_repository
from app.models.jobs import HiringStatusRequest, JobCreateRequest, SaveJobRequest
from app.services.job_repository import JobRepository

router = APIRouter()


@router.get("/jobs", tags=["Jobs"])
async def list_jobs(
    location: Optional[str] = None,
    company_id: Optional[str] = None,
    search: Optional[str] = None,
    repo: JobRepository = Depends(get_job_repository),
):
    jobs = await repo.list(location=location, company_id=company_id, search_query=search)
    return {"results": jobs}


@router.post("/jobs", tags=["Jobs"], status_code=201)
async def create_job(request: JobCreateRequest, repo: JobRepository = Depends(get_job_repository)):
    return await repo.create(request.model_dump(exclude_none=True))


@router.get("/jobs/saved", tags=["Jobs"])
async def list_saved_jobs(user_id: Optional[str] = None, repo: JobRepository = Depends(get_job_repository)):
    return {"results": await repo.list_saved(user_id)}


@router.get("/jobs/mine", tags=["Jobs"])
async def list_my_jobs(recruiter_id: Optional[str] = None, repo: JobRepository = Depends(get_job_repository)):
    return {"results": await repo.list_for_recruiter(recruiter_id)}


@router.get("/jobs/{job_id}", tags=["Jobs"])
async def get_job(job_id: str, repo: JobRepository = Depends(get_job_repository)):
    return await repo.get_single(job_id)


@router.patch("/jobs/{job_id}/hiring-status", tags=["Jobs"])
async def update_hiring_status(
    job_id: str,
    request: HiringStatusRequest,
    repo: JobRepository = Depends(get_job_repository),
):
    return await repo.update_hiring_status(job_id, request.isOpen, recruiter_id=request.recruiter_id)


@router.delete("/jobs/{job_id}", tags=["Jobs"])
async def delete_job(
    job_id: str,
    recruiter_id: Optional[str] = None,
    repo: JobRepository = Depends(get_job_repository),
):
    return {"deleted": await repo.delete(job_id, recruiter_id=recruiter_id)}


@router.post("/jobs/{job_id}/save", tags=["Jobs"])
async def toggle_save_job(job_id: str, request: SaveJobRequest, repo: JobRepository = Depends(get_job_repository)):
    return await repo.toggle_save(request.user_id, job_id, request.already_saved)
