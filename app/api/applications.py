from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from app.api.deps import get_application_repository
from app.models.applications import StatusUpdateRequest
from app.models.uploads import FileUpload
from app.services.application_repository import ApplicationRepository

router = APIRouter()


@router.post("/jobs/{job_id}/applications", tags=["Applications"], status_code=201)
async def apply_to_job(
    job_id: str,
    candidate_id: Optional[str] = Form(None),
    name: Optional[str] = Form(None),
    experience: Optional[str] = Form(None),
    skills: Optional[str] = Form(None),
    education: Optional[str] = Form(None),
    resume: Optional[UploadFile] = File(None),
    repo: ApplicationRepository = Depends(get_application_repository),
):
    upload = None
    if resume is not None:
        upload = FileUpload(resume.filename or "resume", await resume.read(), resume.content_type)

    metadata = {"name": name, "experience": experience, "skills": skills, "education": education}
    return await repo.apply(candidate_id, job_id, upload, metadata)


@router.get("/jobs/{job_id}/applications", tags=["Applications"])
async def list_job_applications(job_id: str, repo: ApplicationRepository = Depends(get_application_repository)):
    return {"results": await repo.list_for_job(job_id)}


@router.get("/applications", tags=["Applications"])
async def list_candidate_applications(
    candidate_id: Optional[str] = None,
    repo: ApplicationRepository = Depends(get_application_repository),
):
    return {"results": await repo.list_for_candidate(candidate_id)}


@router.get("/applications/{application_id}", tags=["Applications"])
async def get_application(application_id: str, repo: ApplicationRepository = Depends(get_application_repository)):
    return await repo.get_by_id(application_id)


@router.patch("/applications/{application_id}/status", tags=["Applications"])
async def update_application_status(
    application_id: str,
    request: StatusUpdateRequest,
    repo: ApplicationRepository = Depends(get_application_repository),
):
    return await repo.update_status(application_id, request.status)
