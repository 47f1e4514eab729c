# tuss3store

A storage backend for resumable (tus) uploads. It keeps its data in Amazon S3
or in any S3-compatible service.

## How it stores an upload

Starting an upload creates two things in the bucket:

- an `<id>.info` object. It holds a JSON description of the upload: its size, its
  metadata and its storage location.
- an S3 multipart upload for the content itself.

Each chunk you write is split into parts on disk and pushed to the multipart
upload. S3 requires every part except the last to reach a minimum size. A
trailing piece that is too small is kept in an `<id>.part` object. The next
chunk starts with that piece.

Finishing the upload completes the multipart upload. Terminating it does
three things:

- it aborts the multipart upload;
- it deletes the content object, the `.part` object and the `.info` object;
- it ignores objects and multipart uploads that are already gone.

Upload ids have the form `<object id>+<multipart upload id>`. If a new upload's
`FileInfo.id` is empty, the store makes up a random object id.

Metadata sent to S3 with the multipart upload has every character that is not
allowed in a header value replaced by `?`. The `.info` object keeps the
metadata unchanged.

## Installation

```
pip install tuss3store
```

The package has no runtime dependencies. You supply the S3 client yourself
by implementing the `S3API` protocol from `tuss3store.service`. It covers these
methods:

- `create_multipart_upload`
- `put_object`
- `list_parts`
- `upload_part`
- `get_object`
- `abort_multipart_upload`
- `delete_object`
- `delete_objects`
- `complete_multipart_upload`
- `upload_part_copy`

The store calls these methods with keyword arguments. The module also defines
the value types they exchange: `Part`, `CompletedPart`, `ListPartsResult`,
`GetObjectResult` and `DeleteError`.

## Usage

```python
from tuss3store.fileinfo import FileInfo
from tuss3store.store import S3Store

store = S3Store("my-bucket", service)   # service implements S3API
store.object_prefix = "uploads"

upload = store.new_upload(FileInfo(size=11, meta_data={"filename": "hello.txt"}))
with open("hello.txt", "rb") as src:
    written = upload.write_chunk(0, src)
upload.finish_upload()

info = upload.get_info()
print(info.id, info.offset, info.size)
```

`write_chunk(offset, src)` reads from any object with a binary `read()` method.
It returns the number of bytes it took from `src`.

`get_info()` works as follows:

- It reads the `.info` object on first use.
- It works out the current offset from the uploaded parts plus the pending
  `.part` object.
- If the multipart upload no longer exists, the upload counts as complete.

Here is how to get an existing upload, declare a deferred length, concatenate
partial uploads or terminate an upload:

```python
upload = store.get_upload("abc123+multipart-xyz")
store.as_length_declarable_upload(upload).declare_length(500)

final = store.get_upload("final+multipart-final")
part_a = store.get_upload("a+multipart-a")
part_b = store.get_upload("b+multipart-b")
store.as_concatable_upload(final).concat_uploads([part_a, part_b])

store.as_terminatable_upload(upload).terminate()
```

`concat_uploads` picks one of two ways to concatenate:

- If every partial upload is at least `min_part_size` bytes, it copies them
  into the multipart upload as parts and completes it.
- Otherwise it downloads them into one temporary file and stores that as the
  object. It then aborts the multipart upload in the background.

`S3Upload.get_reader()` returns the body stream of the finished object.

## Tuning

`S3Store` is a dataclass with these settings:

| Setting | Default |
| --- | --- |
| `object_prefix` | `""` |
| `metadata_object_prefix` | `""` (falls back to `object_prefix` for `.info` and `.part` objects) |
| `min_part_size` | 5 MiB |
| `preferred_part_size` | 50 MiB |
| `max_part_size` | 5 GiB |
| `max_multipart_parts` | 10000 |
| `max_object_size` | 5 TiB |
| `max_buffered_parts` | 20 (parts kept on disk while one is being sent) |
| `temporary_directory` | `""` (the system default) |
| `disable_content_hashes` | `False` |

`S3Store.calc_optimal_part_size(size)` chooses the part size for an upload of
`size` bytes. It uses the preferred size whenever the upload fits into
`max_multipart_parts` parts at that size. The same calculation is available as
`tuss3store.partsize.calc_optimal_part_size`.

With `disable_content_hashes` set, parts are not passed to `upload_part`. The
store sends each one itself with an HTTP `PUT` to a URL from
`presign_upload_part`. For this the service must also implement
`S3PresignAPI`, and the store raises `TypeError` if it does not. The URL is
valid for 15 minutes.

## Building blocks

The store is made of these parts, which you can also use on their own:

- `tuss3store.fileinfo`:
  - `FileInfo` holds the upload description.
  - `FileInfo.to_json()` encodes it as compact JSON with sorted map keys.
  - `file_info_from_json()` decodes it. Key names match case-insensitively.
- `tuss3store.keys`: `split_ids`, `key_with_prefix`,
  `metadata_key_with_prefix` and `sanitize_metadata_value`.
- `tuss3store.part_producer`:
  - `PartProducer` reads a stream in a background thread and yields
    temporary files of at most a given size.
  - `cleanup_temp_file` closes and removes such a file.

## Errors

These exceptions come from `tuss3store.errors`:

- `NotFoundError` (an `HTTPError` with status 404): the upload does not exist.
- `HTTPError`: carries a `status_code`. For example, `get_reader()` raises
  status 400 when you read an upload that is not finished yet.
- `MultiError`: several S3 calls failed during `terminate()` or a multipart
  concatenation. It holds them in `errors`.
- `S3ServiceError`: your `S3API` implementation raises it with the S3 error
  code (`NoSuchKey`, `NoSuchUpload`, `NotFound`, `AccessDenied`, …).
  `is_service_error(err, code)` tests for a given code.

Other failures surface as standard exceptions:

- `new_upload` raises `ValueError` for an upload larger than `max_object_size`.
- `new_upload` raises `RuntimeError` if the multipart upload or the info object
  cannot be created.
- Part size calculation raises `ValueError` when the needed part size exceeds
  `max_part_size`.

## What this package does not do

This package is only the storage layer. It has no HTTP server and no tus
protocol handler, so it does not parse requests or headers for you. It also
ships no S3 client. You connect it to your own server code and to your own
`S3API` implementation.