"""Bounded CSV statistics log for mailbox usage measurements.

The log is append-only between runs. At the start of each run its data
line count is checked against ``max_lines``; once exceeded, the oldest
``trunc_lines`` rows are dropped by a forward copy into a sibling file that
then replaces the original, or the whole file is unlinked when the drop
window would reach past the rows that existed before the overflow.
"""

from __future__ import annotations

import csv
import io
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, TextIO


STATS_HEADER = "unixtime,msgs,size,percent quota,quota,username,server"
STATS_FIELDS = tuple(STATS_HEADER.split(","))
DEFAULT_MAX_LINES = 10000
DEFAULT_TRUNC_LINES = 1000
TEMP_SUFFIX = ".tmp"

ROTATION_ABSENT = "ABSENT"
ROTATION_NONE = "NONE"
ROTATION_TRUNCATED = "TRUNCATED"
ROTATION_UNLINKED = "UNLINKED"


@dataclass(frozen=True)
class UsageRecord:
    timestamp: int
    message_count: int
    total_bytes: int
    percent_quota: int
    quota_bytes: int
    username: str
    server: str


@dataclass(frozen=True)
class RotationPlan:
    action: str
    rows: tuple[str, ...]
    existing_count: int
    dropped_count: int


@dataclass(frozen=True)
class RotationResult:
    action: str
    data_lines_before: int
    retained_lines: int
    dropped_lines: int


def format_usage_row(record: UsageRecord) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="")
    writer.writerow(
        [
            record.timestamp,
            record.message_count,
            record.total_bytes,
            record.percent_quota,
            record.quota_bytes,
            record.username,
            record.server,
        ]
    )
    return buffer.getvalue()


def parse_usage_row(line: str) -> UsageRecord:
    fields = next(csv.reader([line]), [])
    if len(fields) != len(STATS_FIELDS):
        raise ValueError(
            f"Statistics row must have {len(STATS_FIELDS)} fields, got {len(fields)}: {line!r}"
        )
    try:
        return UsageRecord(
            timestamp=int(fields[0]),
            message_count=int(fields[1]),
            total_bytes=int(fields[2]),
            percent_quota=int(fields[3]),
            quota_bytes=int(fields[4]),
            username=fields[5],
            server=fields[6],
        )
    except ValueError as error:
        raise ValueError(f"Invalid statistics row {line!r}: {error}") from error


def strip_header(lines: Iterable[str]) -> Iterator[str]:
    """Yield the data rows of a stats file, without line terminators.

    Only a first line equal to the header is treated as one; a file written
    by something else keeps every line as data.
    """
    first = True
    for line in lines:
        row = line.rstrip("\r\n")
        if first:
            first = False
            if row == STATS_HEADER:
                continue
        yield row


def decide_rotation(data_line_count: int | None, max_lines: int, trunc_lines: int) -> str:
    if data_line_count is None:
        return ROTATION_ABSENT
    if data_line_count <= max_lines:
        return ROTATION_NONE
    # The bound is first exceeded by row max_lines + 1, so max_lines rows
    # precede the overflow.
    if trunc_lines >= max_lines:
        return ROTATION_UNLINKED
    return ROTATION_TRUNCATED


def retained_rows(data_rows: Iterable[str], trunc_lines: int) -> Iterator[str]:
    """Skip the oldest ``trunc_lines`` rows and yield the rest.

    A blank first survivor is dropped as a trailing-newline artifact, except
    when it is the only row left. Only rows already in the file count here.
    Truncation needs trunc_lines < max_lines < row count, so it always leaves
    at least two rows and the sole-blank case only arises when this is
    called on its own.
    """
    rows = iter(data_rows)
    for _ in range(trunc_lines):
        if next(rows, None) is None:
            return

    first = next(rows, None)
    if first is None:
        return
    second = next(rows, None)
    if second is None:
        yield first
        return
    if first.strip():
        yield first
    yield second
    yield from rows


def plan_rotation(
    existing_lines: Iterable[str] | None,
    max_lines: int,
    trunc_lines: int,
    new_rows: Iterable[str] = (),
) -> RotationPlan:
    """Return the data rows a stats file holds after rotation plus this run's appends.

    ``existing_lines`` is None when the file does not exist.
    """
    appended = tuple(new_rows)
    if existing_lines is None:
        return RotationPlan(action=ROTATION_ABSENT, rows=appended, existing_count=0, dropped_count=0)

    data_rows = list(strip_header(existing_lines))
    existing_count = len(data_rows)
    action = decide_rotation(existing_count, max_lines, trunc_lines)
    if action == ROTATION_NONE:
        kept: tuple[str, ...] = tuple(data_rows)
    elif action == ROTATION_UNLINKED:
        kept = ()
    else:
        kept = tuple(retained_rows(data_rows, trunc_lines))

    return RotationPlan(
        action=action,
        rows=kept + appended,
        existing_count=existing_count,
        dropped_count=existing_count - len(kept),
    )


def count_data_lines(path: Path) -> int | None:
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8", newline="") as file:
        return sum(1 for _row in strip_header(file))


def rewrite_without_oldest(path: Path, trunc_lines: int) -> int:
    """Forward-copy ``path`` minus its oldest rows and atomically replace it.

    Returns the number of data rows kept.
    """
    temp_path = path.with_name(path.name + TEMP_SUFFIX)
    retained = 0
    try:
        with path.open("r", encoding="utf-8", newline="") as source, temp_path.open(
            "w", encoding="utf-8", newline=""
        ) as target:
            target.write(STATS_HEADER + "\n")
            for row in retained_rows(strip_header(source), trunc_lines):
                target.write(row + "\n")
                retained += 1
            target.flush()
            os.fsync(target.fileno())
        os.replace(temp_path, path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise
    return retained


def read_usage_records(path: Path) -> list[UsageRecord]:
    with path.open("r", encoding="utf-8", newline="") as file:
        return [parse_usage_row(row) for row in strip_header(file) if row.strip()]


class StatsLog:
    """Append handle on the statistics file, rotated once when opened.

    Use as a context manager; the file stays open for the whole run and is
    closed on every exit path.
    """

    def __init__(self, path: Path, max_lines: int, trunc_lines: int) -> None:
        if max_lines < 1:
            raise ValueError("max_lines must be >= 1.")
        if trunc_lines < 1:
            raise ValueError("trunc_lines must be >= 1.")
        self.path = path
        self.max_lines = max_lines
        self.trunc_lines = trunc_lines
        self.rotation: RotationResult | None = None
        self.appended_count = 0
        self._file: TextIO | None = None

    def __enter__(self) -> StatsLog:
        self.rotation = self.rotate()
        needs_header = not self.path.exists() or self.path.stat().st_size == 0
        self._file = self.path.open("a", encoding="utf-8", newline="")
        try:
            if needs_header:
                self._file.write(STATS_HEADER + "\n")
                self._file.flush()
        except OSError:
            self.close()
            raise
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def rotate(self) -> RotationResult:
        data_line_count = count_data_lines(self.path)
        action = decide_rotation(data_line_count, self.max_lines, self.trunc_lines)
        before = data_line_count or 0

        if action == ROTATION_UNLINKED:
            self.path.unlink()
            return RotationResult(action=action, data_lines_before=before, retained_lines=0, dropped_lines=before)

        if action == ROTATION_TRUNCATED:
            retained = rewrite_without_oldest(self.path, self.trunc_lines)
            return RotationResult(
                action=action,
                data_lines_before=before,
                retained_lines=retained,
                dropped_lines=before - retained,
            )

        return RotationResult(action=action, data_lines_before=before, retained_lines=before, dropped_lines=0)

    def append(self, record: UsageRecord) -> None:
        if self._file is None:
            raise ValueError(f"Statistics file {self.path} is not open.")
        self._file.write(format_usage_row(record) + "\n")
        self._file.flush()
        self.appended_count += 1
