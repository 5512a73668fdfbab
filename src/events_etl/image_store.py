"""events_etl.image_store

Publish the certificate background image where the certificate renderer
can find it. The SQL batch only embeds the reference string; the store
puts the bytes behind it.
"""

from __future__ import annotations

import logging
import mimetypes
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol

log = logging.getLogger(__name__)


def image_reference(image_path: Path, prefix: str = "img") -> str:
    """Reference stored in evento.img, e.g. 'img/cert.png'."""
    prefix = prefix.strip("/")
    name = image_path.name
    return f"{prefix}/{name}" if prefix else name


class ImageStore(Protocol):
    def publish(self, image_path: Path, reference: str) -> str:
        """Return the location the image was published to."""
        ...


@dataclass
class GcsImageStore:
    """Upload the image to GCS under prefix/reference."""

    bucket_name: str
    prefix: str = ""

    def publish(self, image_path: Path, reference: str) -> str:
        from google.cloud import storage  # type: ignore[import-untyped]

        obj_path = str(PurePosixPath(self.prefix.strip("/"), reference)) if self.prefix else reference
        content_type = mimetypes.guess_type(image_path.name)[0] or "application/octet-stream"
        client = storage.Client()
        bucket = client.bucket(self.bucket_name)
        blob = bucket.blob(obj_path)
        blob.upload_from_filename(str(image_path), content_type=content_type)
        log.info("uploaded %s to gs://%s/%s", image_path, self.bucket_name, obj_path)
        return f"gs://{self.bucket_name}/{obj_path}"


@dataclass
class LocalImageStore:
    """Copy the image under a local directory (shared mount or tests)."""

    base_dir: Path

    def publish(self, image_path: Path, reference: str) -> str:
        dest = self.base_dir / reference
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(image_path, dest)
        log.info("copied %s to %s", image_path, dest)
        return str(dest)


@dataclass
class NullImageStore:
    """No-op store used when no image directory or bucket is configured."""

    def publish(self, image_path: Path, reference: str) -> str:
        return f"null://{reference}"
