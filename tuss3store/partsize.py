"""Calculation of the part size used for S3 multipart uploads."""

from __future__ import annotations

__all__ = ["calc_optimal_part_size"]


def calc_optimal_part_size(
    size: int,
    preferred_part_size: int,
    max_multipart_parts: int,
    max_part_size: int,
) -> int:
    """Return the part size that lets an upload of *size* bytes fit the part limit.

    The preferred size is used whenever the upload fits into the allowed
    number of parts with it; otherwise the smallest size that does fit is
    chosen. Raises :class:`ValueError` if that size exceeds *max_part_size*.
    """
    if size <= preferred_part_size * max_multipart_parts:
        optimal = preferred_part_size
    else:
        quotient, remainder = divmod(size, max_multipart_parts)
        # Rounding up only when needed keeps the result within max_part_size
        # when the maximum object size equals max_part_size * max_multipart_parts.
        optimal = quotient if remainder == 0 else quotient + 1

    if optimal > max_part_size:
        raise ValueError(
            f"calcOptimalPartSize: to upload {size} bytes optimalPartSize {optimal} "
            f"must exceed MaxPartSize {max_part_size}"
        )
    return optimal