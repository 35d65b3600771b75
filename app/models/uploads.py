from dataclasses import dataclass
from typing import Optional


@dataclass
class FileUpload:
    """An uploaded file held in memory until it is pushed to object storage."""

    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def extension(self) -> str:
        # Mirrors "name.split('.').pop()": the last dot-separated part, or "" when there is no dot
        if "." not in self.filename:
            return ""
        return self.filename.rsplit(".", 1)[-1]

    def __bool__(self) -> bool:
        return bool(self.content)
