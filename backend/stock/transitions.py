"""
Unit lifecycle state machine.

IN_STOCK --(allocation)--> ACQUIRED --RETURN--> IN_STOCK
                           ACQUIRED --REPAIR_OUT--> IN_REPAIR --REPAIR_IN--> IN_STOCK
Any non-terminal state --SCRAP/LOST (elevated)--> SCRAPPED / LOST

Allocation is not a UnitAction: it is driven by
AllocationService.allocate_for_consumption, which picks the unit itself.
"""

from dataclasses import dataclass
from enum import Enum

from django.db import models

from .models import Movement, Unit


Status = Unit.Status


class Capability(Enum):
    STANDARD = 'standard'
    ELEVATED = 'elevated'


class UnitAction(models.TextChoices):
    RETURN = 'RETURN', 'Return to stock'
    REPAIR_OUT = 'REPAIR_OUT', 'Send to repair'
    REPAIR_IN = 'REPAIR_IN', 'Receive from repair'
    SCRAP = 'SCRAP', 'Scrap'
    LOST = 'LOST', 'Mark as lost'


@dataclass(frozen=True)
class Transition:
    action: str
    from_states: frozenset
    to_state: str
    movement_type: str
    requires_elevated: bool = False

    def allows(self, status) -> bool:
        return status in self.from_states


NON_TERMINAL = frozenset({Status.IN_STOCK, Status.ACQUIRED, Status.IN_REPAIR})

TRANSITIONS = {
    UnitAction.RETURN: Transition(
        action=UnitAction.RETURN,
        from_states=frozenset({Status.ACQUIRED}),
        to_state=Status.IN_STOCK,
        movement_type=Movement.MovementType.RETURN,
    ),
    UnitAction.REPAIR_OUT: Transition(
        action=UnitAction.REPAIR_OUT,
        from_states=frozenset({Status.ACQUIRED}),
        to_state=Status.IN_REPAIR,
        movement_type=Movement.MovementType.REPAIR_OUT,
    ),
    UnitAction.REPAIR_IN: Transition(
        action=UnitAction.REPAIR_IN,
        from_states=frozenset({Status.IN_REPAIR}),
        to_state=Status.IN_STOCK,
        movement_type=Movement.MovementType.REPAIR_IN,
    ),
    UnitAction.SCRAP: Transition(
        action=UnitAction.SCRAP,
        from_states=NON_TERMINAL,
        to_state=Status.SCRAPPED,
        movement_type=Movement.MovementType.SCRAP,
        requires_elevated=True,
    ),
    UnitAction.LOST: Transition(
        action=UnitAction.LOST,
        from_states=NON_TERMINAL,
        to_state=Status.LOST,
        movement_type=Movement.MovementType.LOST,
        requires_elevated=True,
    ),
}


def get_transition(action) -> Transition:
    """Resolve an action name or UnitAction to its transition. Raises ValueError for unknown names."""
    return TRANSITIONS[UnitAction(action)]


def stock_delta(from_state, to_state) -> int:
    """Effect of a unit moving between two states on the product's IN_STOCK count."""
    return int(to_state == Status.IN_STOCK) - int(from_state == Status.IN_STOCK)


def fields_to_reset(transition: Transition) -> dict:
    """
    Acquisition stamps cleared when a unit leaves a consumer's hands.

    Returning to stock forgets the previous consumer entirely; going to repair
    only releases the assignment so the acquisition history stays on the unit.
    """
    if transition.to_state == Status.IN_STOCK:
        return {
            'assigned_to': None,
            'acquired_at': None,
            'acquired_by': None,
        }
    if transition.to_state == Status.IN_REPAIR:
        return {'assigned_to': None}
    return {}
