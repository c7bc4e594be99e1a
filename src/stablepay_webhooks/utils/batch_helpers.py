"""
Module: batch_helpers.py
Description: Utility functions for batch operations.

Provides helpers for splitting key lists into request-sized chunks for
DynamoDB batch APIs.

Dependencies: typing
Author: StablePay Webhooks Team
"""

from typing import List, Sequence, TypeVar

T = TypeVar('T')


def chunk_list(items: Sequence[T], chunk_size: int) -> List[List[T]]:
    """
    Split a sequence into smaller chunks of specified size.

    Args:
        items: Sequence to split into chunks
        chunk_size: Maximum size of each chunk

    Returns:
        List of chunks, where each chunk is a list of items

    Raises:
        ValueError: If chunk_size is not positive

    Example:
        >>> chunk_list([1, 2, 3, 4, 5], 2)
        [[1, 2], [3, 4], [5]]
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    return [list(items[i:i + chunk_size]) for i in range(0, len(items), chunk_size)]
