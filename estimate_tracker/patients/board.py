"""
Board presentation helpers: column grouping and sorting of cached records.
"""
from typing import Dict, Iterable, List

from .models import ACTIVE_STATUSES
from .schemas import Patient

SORT_OPTIONS = ("date", "name")


def sort_patients(patients: Iterable[Patient], sort_by: str = "date") -> List[Patient]:
    """
    Sort records oldest-first, or alphabetically by display name.

    Raises:
        ValueError: For an unknown sort option
    """
    if sort_by == "name":
        return sorted(patients, key=lambda patient: patient.display_name.casefold())
    if sort_by == "date":
        return sorted(patients, key=lambda patient: patient.created_at)
    raise ValueError(f"Unknown sort option: {sort_by}")


def group_columns(patients: Iterable[Patient], sort_by: str = "date") -> Dict[str, List[Patient]]:
    """
    Group the active records into the board's columns.

    Returns:
        Mapping of active status value to its sorted records; archived records
        are left out
    """
    patients = list(patients)
    return {
        status.value: sort_patients([p for p in patients if p.status == status], sort_by)
        for status in ACTIVE_STATUSES
    }
