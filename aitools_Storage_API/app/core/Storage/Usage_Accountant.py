# Usage_Accountant.py
# Description: Estimates how much storage the dataset uses, per category.
#
# Imports
import json
from dataclasses import dataclass, field
from typing import Iterable, List
#
# 3rd-party Libraries
#
# Local Imports
from aitools_Storage_API.app.core.Storage.models import Dataset
#
########################################################################################################################
#
# Functions:

@dataclass
class StorageBreakdownItem:
    name: str
    bytes: int
    count: int
    fill: str = ""

    def fraction(self, total: int) -> float:
        return self.bytes / total if total else 0.0


@dataclass
class StorageUsage:
    total: int = 0
    breakdown: List[StorageBreakdownItem] = field(default_factory=list)

    def to_dict(self):
        return {
            "total": self.total,
            "breakdown": [
                {"name": i.name, "bytes": i.bytes, "count": i.count, "fill": i.fill} for i in self.breakdown
            ],
        }


def _metadata_size(record) -> int:
    # Compact separators match JSON.stringify output
    return len(json.dumps(record.to_dict(), separators=(",", ":"), ensure_ascii=False).encode("utf-8"))


def _records_size(records: Iterable) -> int:
    return sum(len(r.get_blob() or b"") + _metadata_size(r) for r in records)


def calculate_storage_usage(dataset: Dataset) -> StorageUsage:
    """
    Sums blob sizes plus serialized metadata sizes per category.

    Categories with no bytes are left out of the breakdown and ``total`` is always the sum of
    the breakdown.
    """
    recordings = list(dataset.recordings) + list(dataset.note_recordings)
    candidates = [
        StorageBreakdownItem("Photos", _records_size(dataset.photos), len(dataset.photos), "#a78bfa"),
        StorageBreakdownItem("Recordings", _records_size(recordings), len(recordings), "#f472b6"),
        StorageBreakdownItem("Notes", _records_size(dataset.notes), len(dataset.notes), "#38bdf8"),
        StorageBreakdownItem("Calendar", _records_size(dataset.calendar_events), len(dataset.calendar_events),
                             "#34d399"),
        StorageBreakdownItem("Logs & Templates",
                             _records_size(dataset.log_entries) + _records_size(dataset.templates),
                             len(dataset.log_entries) + len(dataset.templates), "#fb923c"),
    ]
    breakdown = [item for item in candidates if item.bytes > 0]
    return StorageUsage(total=sum(item.bytes for item in breakdown), breakdown=breakdown)

#
# End of Usage_Accountant.py
########################################################################################################################
