"""Uploaded artifact (payment proof or work file)."""
import re
from pydantic import BaseModel, Field

EXTENSION_PATTERN = re.compile(r"[a-z0-9]{1,10}")


class ArtifactUpload(BaseModel):
    filename: str = Field(..., min_length=1)
    content_type: str = Field(default="application/octet-stream")
    content: bytes

    @property
    def extension(self) -> str:
        """Lower-cased suffix of the filename, or ``bin`` when it is not a plain token."""
        if "." not in self.filename:
            return "bin"
        suffix = self.filename.rsplit(".", 1)[-1].lower()
        return suffix if EXTENSION_PATTERN.fullmatch(suffix) else "bin"
