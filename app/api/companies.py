from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from app.api.deps import get_company_repository
from app.models.uploads import FileUpload
from app.services.company_repository import CompanyRepository

router = APIRouter()


@router.get("/companies", tags=["Companies"])
async def list_companies(order: Optional[str] = None, repo: CompanyRepository = Depends(get_company_repository)):
    return {"results": await repo.list(order_by_name=(order == "name"))}


@router.post("/companies", tags=["Companies"], status_code=201)
async def create_company(
    name: Optional[str] = Form(None),
    logo: Optional[UploadFile] = File(None),
    repo: CompanyRepository = Depends(get_company_repository),
):
    upload = None
    if logo is not None:
        upload = FileUpload(logo.filename or "logo", await logo.read(), logo.content_type)
    return await repo.create(name, upload)
