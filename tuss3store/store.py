"""Storage of resumable uploads in an S3-compatible bucket using multipart uploads."""

from __future__ import annotations

import copy
import dataclasses
import io
import os
import secrets
import shutil
import tempfile
import threading
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta
from typing import IO, Any

from .errors import HTTPError, MultiError, NotFoundError, S3ServiceError, is_service_error
from .fileinfo import FileInfo, file_info_from_json
from .keys import key_with_prefix, metadata_key_with_prefix, sanitize_metadata_value, split_ids
from .part_producer import TEMP_FILE_PREFIX, PartProducer, cleanup_temp_file
from .partsize import calc_optimal_part_size
from .service import CompletedPart, GetObjectResult, Part, S3API, S3PresignAPI

__all__ = ["S3Store", "S3Upload"]

_CONCAT_TEMP_FILE_PREFIX = "tusd-s3-concat-tmp-"
_PRESIGN_EXPIRY = timedelta(minutes=15)
_MISSING_PART_CODES = ("NoSuchKey", "NotFound", "AccessDenied")


class _ChainReader:
    """Read from several binary readers one after another."""

    def __init__(self, *readers: Any) -> None:
        self._readers = list(readers)

    def read(self, size: int | None = -1) -> bytes:
        if size is None or size < 0:
            data = b"".join(reader.read() for reader in self._readers)
            self._readers.clear()
            return data
        while self._readers:
            data = self._readers[0].read(size)
            if data:
                return data
            self._readers.pop(0)
        return b""


@dataclass
class S3Store:
    """A data store that keeps uploads in an S3 bucket.

    Each upload consists of a multipart upload holding the data, an ``.info``
    object with the JSON-encoded :class:`FileInfo`, and possibly a ``.part``
    object holding trailing data too small to form a part of its own.
    """

    bucket: str
    service: S3API
    object_prefix: str = ""
    metadata_object_prefix: str = ""
    max_part_size: int = 5 * 1024**3
    min_part_size: int = 5 * 1024**2
    preferred_part_size: int = 50 * 1024**2
    max_multipart_parts: int = 10000
    max_object_size: int = 5 * 1024**4
    max_buffered_parts: int = 20
    temporary_directory: str = ""
    disable_content_hashes: bool = False

    def calc_optimal_part_size(self, size: int) -> int:
        """Return the part size for an upload of *size* bytes."""
        return calc_optimal_part_size(
            size, self.preferred_part_size, self.max_multipart_parts, self.max_part_size
        )

    def new_upload(self, info: FileInfo) -> S3Upload:
        """Create the multipart upload and the info object for a new upload."""
        if info.size > self.max_object_size:
            raise ValueError(
                f"s3store: upload size of {info.size} bytes exceeds "
                f"MaxObjectSize of {self.max_object_size} bytes"
            )
        object_id = info.id or secrets.token_hex(16)
        metadata = {
            key: sanitize_metadata_value(value) for key, value in (info.meta_data or {}).items()
        }
        try:
            multipart_id = self.service.create_multipart_upload(
                bucket=self.bucket, key=self._key(object_id), metadata=metadata
            )
        except Exception as exc:
            raise RuntimeError(f"s3store: unable to create multipart upload:\n{exc}") from exc

        info = dataclasses.replace(
            info,
            id=f"{object_id}+{multipart_id}",
            storage={"Type": "s3store", "Bucket": self.bucket, "Key": self._key(object_id)},
        )
        upload = S3Upload(info.id, self)
        try:
            upload._write_info(info)
        except Exception as exc:
            raise RuntimeError(f"s3store: unable to create info file:\n{exc}") from exc
        return upload

    def get_upload(self, upload_id: str) -> S3Upload:
        """Return a handle for an existing upload; nothing is fetched yet."""
        return S3Upload(upload_id, self)

    def as_terminatable_upload(self, upload: Any) -> S3Upload:
        return self._own(upload)

    def as_length_declarable_upload(self, upload: Any) -> S3Upload:
        return self._own(upload)

    def as_concatable_upload(self, upload: Any) -> S3Upload:
        return self._own(upload)

    @staticmethod
    def _own(upload: Any) -> S3Upload:
        if not isinstance(upload, S3Upload):
            raise TypeError(f"expected an S3Upload, got {type(upload).__name__}")
        return upload

    def _key(self, key: str) -> str:
        return key_with_prefix(self.object_prefix, key)

    def _metadata_key(self, key: str) -> str:
        return metadata_key_with_prefix(self.metadata_object_prefix, self.object_prefix, key)

    def _list_all_parts(self, upload_id: str) -> list[Part]:
        object_id, multipart_id = split_ids(upload_id)
        parts: list[Part] = []
        marker = 0
        while True:
            page = self.service.list_parts(
                bucket=self.bucket,
                key=self._key(object_id),
                upload_id=multipart_id,
                part_number_marker=marker,
            )
            parts.extend(page.parts)
            if not page.is_truncated:
                return parts
            marker = page.next_part_number_marker or 0

    def _get_incomplete_part(self, object_id: str) -> GetObjectResult | None:
        try:
            return self.service.get_object(
                bucket=self.bucket, key=self._metadata_key(object_id + ".part")
            )
        except S3ServiceError as exc:
            if exc.code in _MISSING_PART_CODES:
                return None
            raise

    def _download_incomplete_part(self, object_id: str) -> tuple[IO[bytes] | None, int]:
        obj = self._get_incomplete_part(object_id)
        if obj is None:
            return None, 0
        with obj:
            file = self._temp_file(TEMP_FILE_PREFIX)
            try:
                shutil.copyfileobj(obj.body, file)
                size = file.tell()
                if obj.content_length is not None and size < obj.content_length:
                    raise OSError("short read of incomplete upload")
                file.seek(0)
            except BaseException:
                cleanup_temp_file(file)
                raise
        return file, size

    def _put_incomplete_part(self, object_id: str, file: IO[bytes]) -> None:
        self.service.put_object(
            bucket=self.bucket, key=self._metadata_key(object_id + ".part"), body=file
        )

    def _delete_incomplete_part(self, object_id: str) -> None:
        self.service.delete_object(bucket=self.bucket, key=self._metadata_key(object_id + ".part"))

    def _temp_file(self, prefix: str) -> IO[bytes]:
        return tempfile.NamedTemporaryFile(
            mode="w+b", dir=self.temporary_directory or None, prefix=prefix, delete=False
        )


class S3Upload:
    """One upload kept in an :class:`S3Store`."""

    def __init__(self, upload_id: str, store: S3Store, info: FileInfo | None = None) -> None:
        self.id = upload_id
        self.store = store
        self._info = info

    def __repr__(self) -> str:
        return f"S3Upload(id={self.id!r})"

    def _write_info(self, info: FileInfo) -> None:
        object_id, _ = split_ids(self.id)
        self._info = info
        data = info.to_json()
        self.store.service.put_object(
            bucket=self.store.bucket,
            key=self.store._metadata_key(object_id + ".info"),
            body=io.BytesIO(data),
            content_length=len(data),
        )

    def get_info(self) -> FileInfo:
        """Return the upload's info, fetching it from S3 on first use."""
        if self._info is None:
            self._info = self._fetch_info()
        return copy.deepcopy(self._info)

    def _fetch_info(self) -> FileInfo:
        store = self.store
        object_id, _ = split_ids(self.id)
        try:
            res = store.service.get_object(
                bucket=store.bucket, key=store._metadata_key(object_id + ".info")
            )
        except S3ServiceError as exc:
            if exc.code == "NoSuchKey":
                raise NotFoundError() from exc
            raise
        with res:
            info = file_info_from_json(res.body.read())

        try:
            parts = store._list_all_parts(self.id)
        except S3ServiceError as exc:
            # A missing multipart upload next to an existing info object means
            # the upload has been completed.
            if exc.code in ("NoSuchUpload", "NoSuchKey"):
                info.offset = info.size
                return info
            raise

        offset = sum(part.size or 0 for part in parts)
        incomplete = store._get_incomplete_part(object_id)
        if incomplete is not None:
            with incomplete:
                offset += incomplete.content_length or 0
        info.offset = offset
        return info

    def write_chunk(self, offset: int, src: Any) -> int:
        """Append the data read from *src*, starting at *offset*; return the bytes taken."""
        store = self.store
        object_id, multipart_id = split_ids(self.id)
        info = self.get_info()
        size = info.size
        part_size = store.calc_optimal_part_size(size)
        next_part = len(store._list_all_parts(self.id)) + 1

        incomplete_file, incomplete_size = store._download_incomplete_part(object_id)
        try:
            if incomplete_file is not None:
                store._delete_incomplete_part(object_id)
                src = _ChainReader(incomplete_file, src)

            uploaded = 0
            with PartProducer(
                src, part_size, store.temporary_directory, store.max_buffered_parts
            ) as producer:
                for part_file in producer:
                    try:
                        n = os.fstat(part_file.fileno()).st_size
                        is_final = not info.size_is_deferred and size == (
                            offset - incomplete_size
                        ) + n
                        if n >= store.min_part_size or is_final:
                            self._put_part(object_id, multipart_id, next_part, part_file, n)
                        else:
                            store._put_incomplete_part(object_id, part_file)
                            return uploaded + n - incomplete_size
                    finally:
                        cleanup_temp_file(part_file)
                    offset += n
                    uploaded += n
                    next_part += 1
                if producer.error is not None:
                    raise producer.error
            return uploaded - incomplete_size
        finally:
            if incomplete_file is not None:
                cleanup_temp_file(incomplete_file)

    def _put_part(
        self, object_id: str, multipart_id: str, part_number: int, file: IO[bytes], size: int
    ) -> None:
        store = self.store
        key = store._key(object_id)
        if not store.disable_content_hashes:
            store.service.upload_part(
                bucket=store.bucket,
                key=key,
                upload_id=multipart_id,
                part_number=part_number,
                body=file,
            )
            return

        service = store.service
        if not isinstance(service, S3PresignAPI):
            raise TypeError("s3store: failed to cast S3 service for presigning")
        url = service.presign_upload_part(
            bucket=store.bucket,
            key=key,
            upload_id=multipart_id,
            part_number=part_number,
            expires=_PRESIGN_EXPIRY,
        )
        # An explicit Content-Length avoids chunked transfer, which S3 rejects.
        request = urllib.request.Request(
            url, data=file, method="PUT", headers={"Content-Length": str(size)}
        )
        try:
            with urllib.request.urlopen(request) as response:
                status = response.status
                body = response.read()
        except urllib.error.HTTPError as exc:
            status = exc.code
            body = exc.read()
        if status != 200:
            text = body.decode("utf-8", errors="replace")
            raise RuntimeError(
                f"s3store: unexpected response code {status} for presigned upload: {text}"
            )

    def get_reader(self) -> Any:
        """Return a stream of the finished upload's content."""
        store = self.store
        object_id, multipart_id = split_ids(self.id)
        try:
            return store.service.get_object(bucket=store.bucket, key=store._key(object_id)).body
        except S3ServiceError as exc:
            if exc.code != "NoSuchKey":
                raise

        # Find out whether the upload never existed or is not finished yet.
        try:
            store.service.list_parts(
                bucket=store.bucket,
                key=store._key(object_id),
                upload_id=multipart_id,
                max_parts=0,
            )
        except S3ServiceError as exc:
            if exc.code == "NoSuchUpload":
                raise NotFoundError() from exc
            raise
        raise HTTPError("cannot stream non-finished upload", 400)

    def terminate(self) -> None:
        """Abort the multipart upload and delete every object of the upload."""
        store = self.store
        object_id, multipart_id = split_ids(self.id)

        def abort() -> list[BaseException]:
            try:
                store.service.abort_multipart_upload(
                    bucket=store.bucket, key=store._key(object_id), upload_id=multipart_id
                )
            except Exception as exc:
                if is_service_error(exc, "NoSuchUpload"):
                    return []
                return [exc]
            return []

        def delete() -> list[BaseException]:
            keys = [
                store._key(object_id),
                store._metadata_key(object_id + ".part"),
                store._metadata_key(object_id + ".info"),
            ]
            try:
                failures = store.service.delete_objects(bucket=store.bucket, keys=keys, quiet=True)
            except Exception as exc:
                return [exc]
            return [
                RuntimeError(f"AWS S3 Error ({f.code}) for object {f.key}: {f.message}")
                for f in failures or []
                if f.code != "NoSuchKey"
            ]

        with ThreadPoolExecutor(max_workers=2) as pool:
            aborting = pool.submit(abort)
            deleting = pool.submit(delete)
            errors = aborting.result() + deleting.result()
        if errors:
            raise MultiError(errors)

    def finish_upload(self) -> None:
        """Complete the multipart upload, producing the final object."""
        store = self.store
        object_id, multipart_id = split_ids(self.id)
        parts = store._list_all_parts(self.id)
        if not parts:
            # S3 needs at least one part to complete a multipart upload.
            etag = store.service.upload_part(
                bucket=store.bucket,
                key=store._key(object_id),
                upload_id=multipart_id,
                part_number=1,
                body=io.BytesIO(b""),
            )
            parts = [Part(part_number=1, etag=etag)]
        store.service.complete_multipart_upload(
            bucket=store.bucket,
            key=store._key(object_id),
            upload_id=multipart_id,
            parts=[CompletedPart(part.part_number, part.etag) for part in parts],
        )

    def concat_uploads(self, partial_uploads: list[Any]) -> None:
        """Make this upload the concatenation of *partial_uploads*."""
        has_small_part = any(
            upload.get_info().size < self.store.min_part_size for upload in partial_uploads
        )
        # Parts below the minimum size cannot be copied into a multipart upload.
        if has_small_part:
            self._concat_using_download(partial_uploads)
        else:
            self._concat_using_multipart(partial_uploads)

    def _concat_using_download(self, partial_uploads: list[Any]) -> None:
        store = self.store
        object_id, multipart_id = split_ids(self.id)
        file = store._temp_file(_CONCAT_TEMP_FILE_PREFIX)
        try:
            for partial in partial_uploads:
                partial_id, _ = split_ids(S3Store._own(partial).id)
                with store.service.get_object(
                    bucket=store.bucket, key=store._key(partial_id)
                ) as res:
                    shutil.copyfileobj(res.body, file)
            file.seek(0)
            store.service.put_object(bucket=store.bucket, key=store._key(object_id), body=file)
        finally:
            cleanup_temp_file(file)

        def abort() -> None:
            # The outcome does not change the result of the concatenation.
            try:
                store.service.abort_multipart_upload(
                    bucket=store.bucket, key=store._key(object_id), upload_id=multipart_id
                )
            except Exception:  # noqa: BLE001
                pass

        threading.Thread(target=abort, name="abort-multipart", daemon=True).start()

    def _concat_using_multipart(self, partial_uploads: list[Any]) -> None:
        store = self.store
        object_id, multipart_id = split_ids(self.id)
        sources = [split_ids(S3Store._own(partial).id)[0] for partial in partial_uploads]

        def copy_part(part_number: int, partial_id: str) -> None:
            store.service.upload_part_copy(
                bucket=store.bucket,
                key=store._key(object_id),
                upload_id=multipart_id,
                part_number=part_number,
                copy_source=f"{store.bucket}/{store._key(partial_id)}",
            )

        with ThreadPoolExecutor(max_workers=max(1, len(sources))) as pool:
            futures = [
                pool.submit(copy_part, number, partial_id)
                for number, partial_id in enumerate(sources, start=1)
            ]
            errors = [exc for exc in (f.exception() for f in futures) if exc is not None]
        if errors:
            raise MultiError(errors)
        self.finish_upload()

    def declare_length(self, length: int) -> None:
        """Set the size of an upload whose length was deferred."""
        info = self.get_info()
        info.size = length
        info.size_is_deferred = False
        self._write_info(info)