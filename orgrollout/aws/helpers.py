"""
Shared AWS helper utilities for paginated list calls.
"""

from collections.abc import Iterator
from typing import Any

from botocore.client import BaseClient

__all__ = ["paginated_items"]


def paginated_items(
    client: BaseClient,
    operation_name: str,
    result_key: str,
    **operation_kwargs: Any
) -> Iterator[dict[str, Any]]:
    """
    Yield every item under result_key across all pages of a list operation.

    Pages missing the key (empty parents, empty stack sets) contribute nothing.
    """
    paginator = client.get_paginator(operation_name)
    for page in paginator.paginate(**operation_kwargs):
        yield from page.get(result_key, [])
