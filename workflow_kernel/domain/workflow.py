"""
Canonical phase workflow types (``workflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for phase-ordered workflows.  A phased subject moves
forward one phase at a time and may roll back one phase at a time;
phases that own artifacts declare them so rollback can cascade-delete
them in dependency order.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Phase names are unique within a workflow.
* ``ArtifactRef`` tuples are listed children-first; rollback deletes them
  in declaration order before the subject header changes phase.
"""

from __future__ import annotations

from dataclasses import dataclass

from workflow_kernel.domain.subject import StageKind


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a phase may be left.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the state machine does,
    using the checks the owning module supplies.
    """
    name: str
    description: str


@dataclass(frozen=True)
class ArtifactRef:
    """Child records a phase creates, keyed back to the subject."""
    table: str
    subject_key: str


@dataclass(frozen=True)
class Phase:
    name: str
    stage: StageKind
    artifacts: tuple[ArtifactRef, ...] = ()
    exit_guard: Guard | None = None


@dataclass(frozen=True)
class PhasedWorkflow:
    """An ordered phase definition for a document lifecycle.

    Contract: frozen; phases are walked strictly in tuple order.
    """
    name: str
    description: str
    phases: tuple[Phase, ...]

    def __post_init__(self) -> None:
        names = [p.name for p in self.phases]
        if not names:
            raise ValueError(f"Workflow {self.name} declares no phases")
        if len(set(names)) != len(names):
            raise ValueError(f"Workflow {self.name} has duplicate phase names")

    @property
    def first(self) -> Phase:
        return self.phases[0]

    @property
    def final(self) -> Phase:
        return self.phases[-1]

    def index_of(self, name: str) -> int:
        for idx, phase in enumerate(self.phases):
            if phase.name == name:
                return idx
        raise ValueError(f"Unknown phase '{name}' for workflow {self.name}")

    def phase(self, name: str) -> Phase:
        return self.phases[self.index_of(name)]

    def next_phase(self, name: str) -> Phase | None:
        idx = self.index_of(name)
        return self.phases[idx + 1] if idx + 1 < len(self.phases) else None

    def previous_phase(self, name: str) -> Phase | None:
        idx = self.index_of(name)
        return self.phases[idx - 1] if idx > 0 else None
