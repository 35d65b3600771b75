import re
import time
from typing import Any, Dict, List, Optional

from app.errors import CredentialExpired, MissingParameter, PersistenceError, StorageError
from app.models.uploads import FileUpload
from app.services.backend_client import BackendError
from app.services.repository import Repository

LOGO_BUCKET = "company-logo"
LOGO_PREFIX = "logos"


def logo_object_path(name: str, logo: FileUpload) -> str:
    safe_name = re.sub(r"\s+", "_", name.strip())
    file_name = f"{int(time.time() * 1000)}_{safe_name}"
    if logo.extension:
        file_name = f"{file_name}.{logo.extension}"
    return f"{LOGO_PREFIX}/{file_name}"


class CompanyRepository(Repository):
    name = "CompanyRepository"

    async def list(self, order_by_name: bool = False) -> List[Dict[str, Any]]:
        def _list(client):
            query = client.table("companies").select("id,name,logo_url")
            if order_by_name:
                query = query.order("name", ascending=True)
            return query.execute() or []

        return await self._run("fetching companies", _list)

    async def create(self, name: Optional[str], logo: Optional[FileUpload]) -> Dict[str, Any]:
        name = (name or "").strip()
        missing = [field for field, value in (("name", name), ("logo", logo)) if not value]
        if missing:
            raise MissingParameter("Company name and logo are required", fields=missing)

        def _create(client):
            bucket = client.storage(LOGO_BUCKET)
            path = logo_object_path(name, logo)
            self.logger.info(f"Uploading logo: {path}")
            try:
                bucket.upload(path, logo.content, content_type=logo.content_type, upsert=False)
            except BackendError as exc:
                self.logger.error(f"[ERROR] Error uploading logo {path}: {exc.message}")
                if exc.is_conflict:
                    raise StorageError(f"A logo named {path} already exists", original_error=exc)
                raise StorageError(f"Error uploading logo: {exc.message}", original_error=exc)

            logo_url = bucket.public_url(path)
            try:
                return (
                    client.table("companies")
                    .insert({"name": name, "logo_url": logo_url})
                    .select("*")
                    .single()
                    .execute()
                )
            except BackendError as exc:
                self._discard_upload(bucket, path)
                self.logger.error(f"[ERROR] Error inserting company {name}: [{exc.code}] {exc.message}")
                raise PersistenceError(f"Error creating company: {exc.message}", original_error=exc)
            except CredentialExpired:
                self._discard_upload(bucket, path)
                raise

        company = await self._run("creating company", _create)
        self.logger.info(f"Company created: {company.get('id')} {name}")
        return company
