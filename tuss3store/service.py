"""The interface the upload store uses to talk to an S3-compatible service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import BinaryIO, Protocol, runtime_checkable

__all__ = [
    "CompletedPart",
    "DeleteError",
    "GetObjectResult",
    "ListPartsResult",
    "Part",
    "S3API",
    "S3PresignAPI",
]


@dataclass(frozen=True)
class Part:
    """A part that has been uploaded to a multipart upload."""

    part_number: int | None = None
    size: int | None = None
    etag: str | None = None


@dataclass(frozen=True)
class CompletedPart:
    """A part reference sent when completing a multipart upload."""

    part_number: int | None
    etag: str | None


@dataclass
class ListPartsResult:
    """One page of the parts that belong to a multipart upload."""

    parts: list[Part] = field(default_factory=list)
    is_truncated: bool = False
    next_part_number_marker: int | None = None


@dataclass
class GetObjectResult:
    """The body of a fetched object together with its announced length."""

    body: BinaryIO
    content_length: int | None = None

    def close(self) -> None:
        """Close the body stream."""
        self.body.close()

    def __enter__(self) -> GetObjectResult:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@dataclass(frozen=True)
class DeleteError:
    """A per-object failure reported by a batch delete."""

    code: str
    key: str
    message: str


class S3API(Protocol):
    """Operations of an S3 service needed by the store.

    Failures reported by the service are raised as
    :class:`tuss3store.errors.S3ServiceError` carrying the service's error code.
    """

    def create_multipart_upload(self, bucket: str, key: str, metadata: dict[str, str]) -> str:
        """Start a multipart upload and return its upload id."""
        ...

    def put_object(
        self,
        bucket: str,
        key: str,
        body: BinaryIO,
        content_length: int | None = None,
    ) -> None:
        """Store *body* as the object *key*."""
        ...

    def list_parts(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_number_marker: int | None = None,
        max_parts: int | None = None,
    ) -> ListPartsResult:
        """List the parts of a multipart upload after *part_number_marker*."""
        ...

    def upload_part(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_number: int,
        body: BinaryIO,
    ) -> str | None:
        """Upload one part and return its ETag."""
        ...

    def get_object(self, bucket: str, key: str) -> GetObjectResult:
        """Fetch the object *key*."""
        ...

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        """Abort a multipart upload and discard its parts."""
        ...

    def delete_object(self, bucket: str, key: str) -> None:
        """Delete a single object."""
        ...

    def delete_objects(self, bucket: str, keys: list[str], quiet: bool = True) -> list[DeleteError]:
        """Delete several objects and return the failures for single objects."""
        ...

    def complete_multipart_upload(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        parts: list[CompletedPart],
    ) -> None:
        """Assemble the given parts into the final object."""
        ...

    def upload_part_copy(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_number: int,
        copy_source: str,
    ) -> None:
        """Use the existing object *copy_source* (``bucket/key``) as one part."""
        ...


@runtime_checkable
class S3PresignAPI(Protocol):
    """A service that can presign part uploads, so bodies are sent without hashing."""

    def presign_upload_part(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_number: int,
        expires: timedelta,
    ) -> str:
        """Return a URL that accepts a PUT of the part's body until *expires* has passed."""
        ...