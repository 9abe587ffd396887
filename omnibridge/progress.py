"""Progress Projector: maps indexer status and elapsed time to a UI step."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import IntEnum
from typing import List, Optional, Tuple

from .constants import PROGRESS_WINDOW_SECONDS, STATUS_EXECUTED, STATUS_PENDING
from .models import parse_timestamp

STEP_COMPLETED = "completed"
STEP_CURRENT = "current"
STEP_PENDING = "pending"


class ProgressStep(IntEnum):
    WAITING = 0
    CONFIRMING = 1
    EXCHANGING = 2
    SENDING = 3
    FINISHED = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()


# Upper bounds (exclusive) of the elapsed fraction for each pending step.
_THRESHOLDS: Tuple[Tuple[float, ProgressStep], ...] = (
    (0.35, ProgressStep.WAITING),
    (0.65, ProgressStep.CONFIRMING),
    (0.90, ProgressStep.EXCHANGING),
)


def project_step(
    status: str,
    created_at: datetime | str,
    now: Optional[datetime] = None,
    *,
    window: float = PROGRESS_WINDOW_SECONDS,
) -> ProgressStep:
    """Estimate how far along a transfer is from its status and age.

    Only ``executed`` reaches FINISHED; a pending transfer saturates at SENDING
    however long it takes. Any other status reads as WAITING.
    """
    status = (status or "").lower()
    if status == STATUS_EXECUTED:
        return ProgressStep.FINISHED
    if status != STATUS_PENDING:
        return ProgressStep.WAITING

    created = parse_timestamp(created_at)
    if created is None:
        return ProgressStep.WAITING
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    elapsed = max((current - created).total_seconds(), 0.0)
    progress = min(elapsed / window, 1.0)
    for upper, step in _THRESHOLDS:
        if progress < upper:
            return step
    return ProgressStep.SENDING


def step_states(current: ProgressStep) -> List[Tuple[ProgressStep, str]]:
    states = []
    for step in ProgressStep:
        if step < current:
            states.append((step, STEP_COMPLETED))
        elif step == current:
            states.append((step, STEP_CURRENT))
        else:
            states.append((step, STEP_PENDING))
    return states


def format_amount(amount_wei: str | int, decimals: int, places: int = 6) -> str:
    """Human amount rounded to ``places`` decimals with trailing zeros removed."""
    value = Decimal(int(amount_wei)) / (Decimal(10) ** decimals)
    text = f"{value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP):f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text
