"""
Continuation state of a multipart backup.

The worker persists this in ``BackupJob.metadata`` after every part so the
next invocation (or a retry of the same part) knows exactly where to resume.
"""

import math
from dataclasses import dataclass

from .exceptions import PermanentBackupError

_FIELDS = ("current_part", "total_parts", "items_per_part")


@dataclass(frozen=True)
class ContinuationState:
    current_part: int
    total_parts: int
    items_per_part: int

    def __post_init__(self):
        if self.items_per_part < 1:
            raise PermanentBackupError(f"items_per_part must be >= 1, got {self.items_per_part}")
        if self.total_parts < 1:
            raise PermanentBackupError(f"total_parts must be >= 1, got {self.total_parts}")
        if not 1 <= self.current_part <= self.total_parts:
            raise PermanentBackupError(
                f"current_part {self.current_part} outside 1..{self.total_parts}"
            )

    @classmethod
    def start(cls, total_images: int, items_per_part: int) -> "ContinuationState":
        """
        State for the first invocation of a job.

        A job with no images still gets one part so its manifest is archived.
        """
        total_parts = max(1, math.ceil(total_images / items_per_part))
        return cls(current_part=1, total_parts=total_parts, items_per_part=items_per_part)

    @classmethod
    def from_metadata(cls, metadata: dict | None) -> "ContinuationState | None":
        """
        Read the state back from a job's metadata.

        Returns None when the job never ran. A partially written state is
        rejected instead of being filled with defaults.
        """
        metadata = metadata or {}
        present = [name for name in _FIELDS if name in metadata]
        if not present:
            return None
        missing = [name for name in _FIELDS if name not in metadata]
        if missing:
            raise PermanentBackupError(f"Corrupt continuation state, missing: {', '.join(missing)}")
        try:
            values = {name: int(metadata[name]) for name in _FIELDS}
        except (TypeError, ValueError):
            raise PermanentBackupError(f"Corrupt continuation state: {metadata!r}")
        return cls(**values)

    def to_metadata(self) -> dict:
        return {
            "current_part": self.current_part,
            "total_parts": self.total_parts,
            "items_per_part": self.items_per_part,
        }

    @property
    def is_last_part(self) -> bool:
        return self.current_part >= self.total_parts

    def slice_bounds(self) -> tuple[int, int]:
        """Index range [start, end) of the current part in the flat image list."""
        start = (self.current_part - 1) * self.items_per_part
        return start, start + self.items_per_part

    def advance(self) -> "ContinuationState":
        return ContinuationState(
            current_part=self.current_part + 1,
            total_parts=self.total_parts,
            items_per_part=self.items_per_part,
        )

    def progress_percentage(self, parts_done: int) -> int:
        return round(parts_done / self.total_parts * 100)
