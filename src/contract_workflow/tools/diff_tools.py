"""Line-based version comparison using Myers' shortest edit script.

Provides :func:`diff_lines`, which compares two text blobs line by line
and returns a minimal edit script, and :func:`compare_versions`, which
applies it to two stored versions of a contract.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from contract_workflow.errors import NotFoundError
from contract_workflow.models import Contract


class DiffType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    COMMON = "common"


class DiffEntry(BaseModel):
    """One line operation of an edit script.

    ``line_number`` is the 1-based line in the *new* text for ``common``
    and ``added`` entries and ``None`` for ``removed`` entries.
    """

    type: DiffType
    value: str
    line_number: int | None = None


def diff_lines(old_text: str, new_text: str) -> list[DiffEntry]:
    """Compute the shortest line edit script turning *old_text* into *new_text*.

    Both texts are split on ``"\\n"``. The number of ``added`` plus
    ``removed`` entries equals the true edit distance between the two
    line sequences.

    Args:
        old_text: The earlier text.
        new_text: The later text.

    Returns:
        Ordered :class:`DiffEntry` objects. Keeping ``common`` + ``removed``
        values reproduces the old lines; keeping ``common`` + ``added``
        values reproduces the new lines.
    """
    old_lines = old_text.split("\n")
    new_lines = new_text.split("\n")
    trace = _shortest_edit(old_lines, new_lines)
    return _backtrack(trace, old_lines, new_lines)


def _shortest_edit(old_lines: list[str], new_lines: list[str]) -> list[dict[int, int]]:
    """Run the forward Myers search, recording the frontier before each round.

    ``v[k]`` holds the furthest x reached on diagonal ``k = x - y``. The
    returned trace has one snapshot per edit distance ``d`` explored, taken
    before round ``d`` extends it.
    """
    n, m = len(old_lines), len(new_lines)
    v: dict[int, int] = {1: 0}
    trace: list[dict[int, int]] = []

    for d in range(n + m + 1):
        trace.append(dict(v))
        for k in range(-d, d + 1, 2):
            if k == -d or (k != d and v[k - 1] < v[k + 1]):
                x = v[k + 1]
            else:
                x = v[k - 1] + 1
            y = x - k
            while x < n and y < m and old_lines[x] == new_lines[y]:
                x += 1
                y += 1
            v[k] = x
            if x >= n and y >= m:
                return trace

    return trace


def _backtrack(
    trace: list[dict[int, int]],
    old_lines: list[str],
    new_lines: list[str],
) -> list[DiffEntry]:
    """Walk the recorded frontiers from (N, M) back to (0, 0)."""
    x, y = len(old_lines), len(new_lines)
    script: list[DiffEntry] = []

    for d in range(len(trace) - 1, -1, -1):
        v = trace[d]
        k = x - y
        if k == -d or (k != d and v[k - 1] < v[k + 1]):
            prev_k = k + 1
        else:
            prev_k = k - 1
        prev_x = v[prev_k]
        prev_y = prev_x - prev_k

        while x > prev_x and y > prev_y:
            script.append(DiffEntry(type=DiffType.COMMON, value=old_lines[x - 1], line_number=y))
            x -= 1
            y -= 1

        if d > 0:
            if x == prev_x:
                script.append(DiffEntry(type=DiffType.ADDED, value=new_lines[y - 1], line_number=y))
            else:
                script.append(DiffEntry(type=DiffType.REMOVED, value=old_lines[x - 1]))

        x, y = prev_x, prev_y

    script.reverse()
    return script


def edit_distance(script: list[DiffEntry]) -> int:
    """Count the non-common entries of an edit script."""
    return sum(1 for entry in script if entry.type != DiffType.COMMON)


def compare_versions(contract: Contract, from_number: int, to_number: int) -> list[DiffEntry]:
    """Diff two stored versions of *contract* by version number.

    Raises:
        NotFoundError: If either version number does not exist.
    """
    by_number = {v.version_number: v for v in contract.versions}
    for number in (from_number, to_number):
        if number not in by_number:
            raise NotFoundError(
                f"Version {number} not found on contract {contract.id}"
            )
    return diff_lines(by_number[from_number].content, by_number[to_number].content)
