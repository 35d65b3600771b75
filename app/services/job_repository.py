import math
from typing import Any, Dict, List, Mapping, Optional

from app.errors import InvalidArgument, MissingParameter, NotFound, ValidationError
from app.services.backend_client import BackendError
from app.services.repository import Repository

JOB_COLUMNS = "id,title,description,requirements,location,isOpen,recruiter_id,company_id,created_at"
COMPANY_EMBED = "company:companies(id,name,logo_url)"
SAVED_COLUMNS = "id,user_id,job_id,created_at"


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def coerce_id(value: Any) -> Optional[int]:
    """Numeric coercion of an id: positive integers, or strings/floats holding one. Anything else is None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        number = int(value)
    else:
        text = str(value).strip()
        try:
            number = int(text)
        except ValueError:
            try:
                parsed = float(text)
            except ValueError:
                return None
            if not math.isfinite(parsed) or not parsed.is_integer():
                return None
            number = int(parsed)
    return number if number > 0 else None


def build_job_payload(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalize a job before insert.
    Raises ValidationError naming every missing/invalid required field.
    """
    title = _clean(raw.get("title"))
    description = _clean(raw.get("description"))
    location = _clean(raw.get("location"))
    requirements = _clean(raw.get("requirements"))
    recruiter_id = _clean(raw.get("recruiter_id"))
    company_id = coerce_id(raw.get("company_id"))

    missing = []
    if not title:
        missing.append("title")
    if not description:
        missing.append("description")
    if not location:
        missing.append("location")
    if company_id is None:
        missing.append("company_id")
    if not recruiter_id:
        missing.append("recruiter_id")

    if missing:
        raise ValidationError(f"Missing required job fields: {', '.join(missing)}", fields=missing)

    is_open = raw.get("isOpen")
    if is_open is not None and not isinstance(is_open, bool):
        raise InvalidArgument("isOpen must be true or false", fields=["isOpen"])
    return {
        "title": title,
        "description": description,
        "location": location,
        "requirements": requirements,
        "company_id": company_id,
        "recruiter_id": recruiter_id,
        "isOpen": True if is_open is None else is_open,
    }


class JobRepository(Repository):
    name = "JobRepository"

    async def create(self, job: Mapping[str, Any]) -> Dict[str, Any]:
        payload = build_job_payload(job)
        self.logger.info(f"Creating job '{payload['title']}' for company {payload['company_id']}")

        def _create(client):
            return (
                client.table("jobs")
                .insert(payload)
                .select(f"{JOB_COLUMNS},{COMPANY_EMBED}")
                .single()
                .execute()
            )

        row = await self._run("creating job", _create)
        self.logger.info(f"Job created: id={row.get('id')}")
        return row

    async def list(
        self,
        location: Optional[str] = None,
        company_id: Any = None,
        search_query: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Newest first, each with its company and save records. Empty filters are ignored."""
        location = _clean(location)
        company = coerce_id(company_id)
        search = _clean(search_query)

        def _list(client):
            query = (
                client.table("jobs")
                .select(f"{JOB_COLUMNS},saved:saved_jobs(id,user_id),{COMPANY_EMBED}")
                .order("id", ascending=False)
            )
            if location:
                query = query.eq("location", location)
            if company is not None:
                query = query.eq("company_id", company)
            if search:
                query = query.ilike("title", f"*{search}*")
            return query.execute() or []

        return await self._run("fetching jobs", _list)

    async def list_saved(self, user_id: str) -> List[Dict[str, Any]]:
        if not user_id:
            raise MissingParameter("user_id is required", fields=["user_id"])

        def _list_saved(client):
            rows = (
                client.table("saved_jobs")
                .select(
                    f"""
                    id,
                    job:jobs(
                        {JOB_COLUMNS},
                        saved:saved_jobs!inner(id,user_id),
                        {COMPANY_EMBED}
                    )
                    """
                )
                .eq("user_id", user_id)
                .execute()
            )
            return [{**row["job"], "saved": row["job"].get("saved") or []} for row in rows or [] if row.get("job")]

        return await self._run("fetching saved jobs", _list_saved)

    async def list_for_recruiter(self, recruiter_id: str) -> List[Dict[str, Any]]:
        if not recruiter_id:
            raise MissingParameter("recruiter_id is required", fields=["recruiter_id"])

        def _list_mine(client):
            return (
                client.table("jobs")
                .select("*,company:companies(name,logo_url)")
                .eq("recruiter_id", recruiter_id)
                .order("created_at", ascending=False)
                .execute()
            ) or []

        return await self._run("fetching recruiter jobs", _list_mine)

    async def toggle_save(self, user_id: str, job_id: Any, already_saved: bool) -> Dict[str, Any]:
        """
        Save or unsave a job for a user. Both directions are idempotent: a
        duplicate save returns the existing record, and unsaving something
        not saved is a no-op.
        """
        job = coerce_id(job_id)
        missing = [name for name, value in (("user_id", user_id), ("job_id", job)) if not value]
        if missing:
            raise MissingParameter("User ID and Job ID are required", fields=missing)

        def _toggle(client):
            if already_saved:
                client.table("saved_jobs").delete().eq("user_id", user_id).eq("job_id", job).execute()
                return {"action": "unsaved"}

            try:
                row = (
                    client.table("saved_jobs")
                    .insert({"user_id": user_id, "job_id": job})
                    .select(SAVED_COLUMNS)
                    .single()
                    .execute()
                )
            except BackendError as exc:
                if not exc.is_unique_violation:
                    raise
                self.logger.info(f"Job {job} already saved by {user_id}; keeping existing record.")
                row = (
                    client.table("saved_jobs")
                    .select(SAVED_COLUMNS)
                    .eq("user_id", user_id)
                    .eq("job_id", job)
                    .maybe_single()
                    .execute()
                )
            return {"action": "saved", "data": row}

        return await self._run("saving job" if not already_saved else "unsaving job", _toggle)

    async def update_hiring_status(self, job_id: Any, is_open: Any, recruiter_id: Optional[str] = None) -> Dict[str, Any]:
        job = coerce_id(job_id)
        invalid = []
        if job is None:
            invalid.append("job_id")
        if not isinstance(is_open, bool):
            invalid.append("isOpen")
        if invalid:
            raise InvalidArgument(f"Invalid input: {', '.join(invalid)}", fields=invalid)

        def _update(client):
            query = client.table("jobs").update({"isOpen": is_open}).eq("id", job)
            if recruiter_id:
                query = query.eq("recruiter_id", recruiter_id)
            row = query.select("id,isOpen").maybe_single().execute()
            if not row:
                raise NotFound(f"Job {job} not found")
            return row

        row = await self._run("updating job status", _update)
        self.logger.info(f"Job {job} hiring status -> {'open' if row['isOpen'] else 'closed'}")
        return row

    async def delete(self, job_id: Any, recruiter_id: Optional[str] = None) -> Optional[int]:
        """Returns the deleted id, or None when nothing matched."""
        job = coerce_id(job_id)
        if job is None:
            raise MissingParameter("job_id is required", fields=["job_id"])

        def _delete(client):
            query = client.table("jobs").delete().eq("id", job)
            if recruiter_id:
                query = query.eq("recruiter_id", recruiter_id)
            return query.select("id").maybe_single().execute()

        row = await self._run("deleting job", _delete)
        return row["id"] if row else None

    async def get_single(self, job_id: Any) -> Dict[str, Any]:
        job = coerce_id(job_id)
        if job is None:
            raise MissingParameter("job_id is required", fields=["job_id"])

        def _get(client):
            return (
                client.table("jobs")
                .select(f"{JOB_COLUMNS},{COMPANY_EMBED},applications:applications(*)")
                .eq("id", job)
                .single()
                .execute()
            )

        return await self._run("fetching job", _get, not_found=f"Job {job} not found")
