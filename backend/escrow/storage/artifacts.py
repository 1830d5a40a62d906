"""Directory-backed artifact storage."""
import logging
from pathlib import Path
from escrow.errors import InvalidInput, StoreUnavailable, UpstreamFailure
from escrow.models.artifact import ArtifactUpload
from escrow.storage.base import ArtifactStore

logger = logging.getLogger(__name__)


class LocalArtifactStore(ArtifactStore):
    """
    Stores artifacts under ``<root>/<bucket>/<path>``.

    The bucket directory must already exist unless ``create_bucket`` is set;
    a missing bucket is reported as StoreUnavailable.
    """

    def __init__(self, root: str, bucket: str = "transaction-files", create_bucket: bool = False):
        self.bucket_dir = Path(root) / bucket
        self.bucket = bucket
        if create_bucket:
            self.bucket_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        target = (self.bucket_dir / path).resolve()
        if self.bucket_dir.resolve() not in target.parents:
            raise InvalidInput(f"Artifact path escapes the bucket: {path!r}")
        return target

    async def upload(self, path: str, artifact: ArtifactUpload) -> str:
        if not self.bucket_dir.is_dir():
            raise StoreUnavailable(f"Bucket {self.bucket} not found at {self.bucket_dir}")
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(artifact.content)
        except OSError as e:
            logger.error("Failed to write artifact %s: %s", target, e)
            raise UpstreamFailure(f"Upload of {path} failed: {e}")
        logger.info("Stored artifact %s (%d bytes)", target, len(artifact.content))
        return target.as_uri()
