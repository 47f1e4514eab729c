"""S3-backed storage for resumable uploads built on S3 multipart uploads."""

__version__ = "0.1.0"

__all__ = ["errors", "keys", "fileinfo", "partsize", "service", "part_producer", "store"]