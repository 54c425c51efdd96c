"""
Directory status roll-up and summary aggregation.

Both are pure functions over immutable comparison nodes.
"""

from __future__ import annotations

from typing import Iterable

from driftscope.core.models import (
    ComparisonNode,
    ComparisonStatus,
    ComparisonSummary,
)


def determine_directory_status(statuses: Iterable[ComparisonStatus]) -> ComparisonStatus:
    """
    Derive a directory's status from its children's statuses.

    Precedence:
    1. Error if any child failed
    2. Different if any child differs, or both LeftOnly and RightOnly are present
    3. LeftOnly, then RightOnly
    4. Equal (including an empty directory)
    """
    has_different = False
    has_left_only = False
    has_right_only = False

    for status in statuses:
        if status == ComparisonStatus.ERROR:
            return ComparisonStatus.ERROR
        if status == ComparisonStatus.DIFFERENT:
            has_different = True
        elif status == ComparisonStatus.LEFT_ONLY:
            has_left_only = True
        elif status == ComparisonStatus.RIGHT_ONLY:
            has_right_only = True

    if has_different or (has_left_only and has_right_only):
        return ComparisonStatus.DIFFERENT
    if has_left_only:
        return ComparisonStatus.LEFT_ONLY
    if has_right_only:
        return ComparisonStatus.RIGHT_ONLY
    return ComparisonStatus.EQUAL


def calculate_summary(root: ComparisonNode) -> ComparisonSummary:
    """Count file nodes by status. Directories are traversed but not counted."""
    counts = {status: 0 for status in ComparisonStatus}
    total = 0

    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_file:
            total += 1
            counts[node.status] += 1
        else:
            stack.extend(node.children)

    return ComparisonSummary(
        total=total,
        equal=counts[ComparisonStatus.EQUAL],
        different=counts[ComparisonStatus.DIFFERENT],
        left_only=counts[ComparisonStatus.LEFT_ONLY],
        right_only=counts[ComparisonStatus.RIGHT_ONLY],
        error=counts[ComparisonStatus.ERROR],
    )
