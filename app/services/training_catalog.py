"""
Remediation training module catalog.

The catalog is keyed by module code. ARP reads it to resolve module names and
due windows, to build the "available" list for an enrollment (every module
not yet assigned to it) and to find the required modules that must be
completed before an enrollment can be completed.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TrainingModule:
    code: str
    name: str
    description: str = ""
    due_days: int | None = None
    required: bool = False

    def to_dict(self) -> dict:
        return {
            "module_code": self.code,
            "module_name": self.name,
            "description": self.description,
            "due_days": self.due_days,
            "required": self.required,
        }


DEFAULT_MODULES = (
    TrainingModule(
        "ATT-101", "Attendance Policy Review",
        "Company attendance policy, point system and write-up process", 7,
        required=True,
    ),
    TrainingModule(
        "CALL-110", "Call-Off Procedures",
        "How and when to report an absence or late arrival", 7,
    ),
    TrainingModule(
        "TIME-201", "Time Management Fundamentals",
        "Planning prep time, commute buffers and daily routines", 14,
    ),
    TrainingModule(
        "SLEEP-120", "Sleep and Shift Readiness",
        "Sleep hygiene and wake-up strategies for early shifts", 14,
    ),
    TrainingModule(
        "TRANS-130", "Transportation Backup Planning",
        "Building a reliable backup plan for getting to work", 14,
    ),
    TrainingModule(
        "EAP-140", "Employee Assistance Resources",
        "Childcare, health and family support resources available to staff", 21,
    ),
    TrainingModule(
        "ENG-300", "Workplace Engagement and Accountability",
        "Ownership, team impact of absences and goal setting", 21,
    ),
)


class TrainingCatalog:
    """Read-only catalog of training modules keyed by code."""

    def __init__(self, modules=DEFAULT_MODULES):
        self._modules = {m.code: m for m in modules}

    def get(self, code: str) -> TrainingModule | None:
        return self._modules.get(code)

    def all(self) -> list[TrainingModule]:
        return list(self._modules.values())

    def available_for(self, assigned_codes) -> list[TrainingModule]:
        """Return catalog modules whose code is not in ``assigned_codes``."""
        assigned = set(assigned_codes)
        return [m for m in self.all() if m.code not in assigned]

    def required_codes(self) -> set[str]:
        return {m.code for m in self._modules.values() if m.required}


default_catalog = TrainingCatalog()
