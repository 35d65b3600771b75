import random
import time
from typing import Any, Dict, List, Mapping, Optional

from app.errors import AlreadyExists, CredentialExpired, InvalidArgument, MissingParameter, NotFound, PersistenceError, StorageError, ValidationError
from app.models.applications import APPLICATION_STATUSES, EDUCATION_LEVELS, ApplicationStatus, Education
from app.models.uploads import FileUpload
from app.services.backend_client import BackendError
from app.services.job_repository import coerce_id
from app.services.repository import Repository

RESUME_BUCKET = "resumes"
RESUME_CONTENT_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

JOB_EMBED = "job:jobs(title,company:companies(name))"


def resume_object_name(candidate_id: str) -> str:
    return f"resume-{random.randint(0, 89999)}-{candidate_id}-{int(time.time() * 1000)}"


def build_application_payload(metadata: Mapping[str, Any], resume: FileUpload) -> Dict[str, Any]:
    """Apply defaults and validate the form fields that ride along with a resume."""
    invalid = []

    experience = metadata.get("experience")
    if experience is None or experience == "":
        experience = 0
    else:
        try:
            if isinstance(experience, bool) or (isinstance(experience, float) and not experience.is_integer()):
                raise ValueError(experience)
            experience = int(experience)
        except (TypeError, ValueError):
            invalid.append("experience")
        else:
            if experience < 0:
                invalid.append("experience")

    education = metadata.get("education") or Education.GRADUATE.value
    if education not in EDUCATION_LEVELS:
        invalid.append("education")

    status = metadata.get("status") or ApplicationStatus.APPLIED.value
    if status not in APPLICATION_STATUSES:
        invalid.append("status")

    if resume.content_type not in RESUME_CONTENT_TYPES:
        invalid.append("resume")

    if invalid:
        raise ValidationError(f"Invalid application fields: {', '.join(invalid)}", fields=invalid)

    return {
        "name": (metadata.get("name") or "").strip() or "Applicant",
        "status": status,
        "experience": experience,
        "skills": metadata.get("skills") or "",
        "education": education,
    }


class ApplicationRepository(Repository):
    name = "ApplicationRepository"

    async def apply(
        self,
        candidate_id: str,
        job_id: Any,
        resume: Optional[FileUpload],
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Upload the resume, then insert the application row.
        If the insert fails the uploaded resume is removed again.
        """
        job = coerce_id(job_id)
        missing = [
            name
            for name, value in (("candidate_id", candidate_id), ("job_id", job), ("resume", resume))
            if not value
        ]
        if missing:
            raise MissingParameter(f"Missing required fields: {', '.join(missing)}", fields=missing)

        fields = build_application_payload(metadata or {}, resume)

        def _apply(client):
            bucket = client.storage(RESUME_BUCKET)
            object_name = resume_object_name(candidate_id)
            try:
                bucket.upload(object_name, resume.content, content_type=resume.content_type)
            except BackendError as exc:
                self.logger.error(f"[ERROR] Storage error uploading resume for {candidate_id}: {exc.message}")
                raise StorageError(f"Error uploading resume: {exc.message}", original_error=exc)

            row = {
                "job_id": job,
                "candidate_id": candidate_id,
                "resume": bucket.public_url(object_name),
                **fields,
            }
            try:
                return client.table("applications").insert(row).select().single().execute()
            except BackendError as exc:
                self._discard_upload(bucket, object_name)
                self.logger.error(f"[ERROR] Database error submitting application: [{exc.code}] {exc.message}")
                if exc.is_unique_violation:
                    raise AlreadyExists("You have already applied to this job", original_error=exc)
                raise PersistenceError(f"Error submitting application: {exc.message}", original_error=exc)
            except CredentialExpired:
                self._discard_upload(bucket, object_name)
                raise

        application = await self._run("submitting application", _apply)
        self.logger.info(f"Application {application.get('id')} submitted by {candidate_id} for job {job}")
        return application

    async def update_status(self, application_id: Any, status: Optional[str]) -> Dict[str, Any]:
        app_id = coerce_id(application_id)
        missing = [name for name, value in (("application_id", app_id), ("status", status)) if not value]
        if missing:
            raise MissingParameter(f"Missing required fields: {', '.join(missing)}", fields=missing)
        if status not in APPLICATION_STATUSES:
            raise InvalidArgument(
                f"Invalid status '{status}'. Expected one of: {', '.join(APPLICATION_STATUSES)}",
                fields=["status"],
            )

        def _update(client):
            row = (
                client.table("applications")
                .update({"status": status})
                .eq("id", app_id)
                .select(f"*,{JOB_EMBED}")
                .maybe_single()
                .execute()
            )
            if not row:
                raise NotFound("Application not found")
            return row

        row = await self._run("updating application status", _update)
        self.logger.info(f"Application {app_id} status -> {status}")
        return row

    async def list_for_candidate(self, user_id: str) -> List[Dict[str, Any]]:
        if not user_id:
            raise MissingParameter("Missing required field: user_id", fields=["user_id"])

        def _list(client):
            return (
                client.table("applications")
                .select(f"*,{JOB_EMBED}")
                .eq("candidate_id", user_id)
                .order("created_at", ascending=False)
                .execute()
            ) or []

        return await self._run("fetching applications", _list)

    async def list_for_job(self, job_id: Any) -> List[Dict[str, Any]]:
        job = coerce_id(job_id)
        if job is None:
            raise MissingParameter("Missing required field: job_id", fields=["job_id"])

        def _list(client):
            return (
                client.table("applications")
                .select("*,candidate:profiles(full_name,email)")
                .eq("job_id", job)
                .order("created_at", ascending=False)
                .execute()
            ) or []

        return await self._run("fetching job applications", _list)

    async def get_by_id(self, application_id: Any) -> Dict[str, Any]:
        app_id = coerce_id(application_id)
        if app_id is None:
            raise MissingParameter("Missing required field: application_id", fields=["application_id"])

        def _get(client):
            return (
                client.table("applications")
                .select(f"*,{JOB_EMBED},candidate:profiles(full_name,email,phone)")
                .eq("id", app_id)
                .single()
                .execute()
            )

        return await self._run("fetching application", _get, not_found="Application not found")
