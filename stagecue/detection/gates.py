"""
Wall-clock pacing gates.

Counts down to the planned session end. Convergence ("start tying threads
together") and denouement ("wrap up") each fire once when the remaining time
first drops to their threshold. Escalation fires once if the story is still
short of the final act some minutes after convergence fired.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..types import TriggerType
from ..util import round_half_up

logger = logging.getLogger(__name__)


@dataclass
class GateHit:
    trigger_type: TriggerType
    data: Dict[str, Any]


class PacingGates:
    """One-shot countdown gates for a single session end time."""

    def __init__(
        self,
        convergence_minutes: float = 45.0,
        denouement_minutes: float = 15.0,
        escalation_delay_minutes: float = 15.0,
        final_act: int = 3,
    ):
        self.convergence_minutes = convergence_minutes
        self.denouement_minutes = denouement_minutes
        self.escalation_delay_minutes = escalation_delay_minutes
        self.final_act = final_act
        self.reset()

    def reset(self) -> None:
        """Re-arm every gate, e.g. after the session end time changes."""
        self.convergence_fired_at: Optional[float] = None
        self.denouement_fired = False
        self.escalation_fired = False

    def check(
        self,
        now: float,
        session_end: Optional[float],
        current_act: int,
        open_threads: List[str],
    ) -> List[GateHit]:
        """
        Evaluate all gates.

        Args:
            now: Current epoch seconds
            session_end: Planned end in epoch seconds (None disables gates)
            current_act: Act the session is in
            open_threads: Unresolved threads to attach to convergence

        Returns:
            Gates that fired on this check, in firing order
        """
        if session_end is None:
            return []

        hits: List[GateHit] = []
        remaining = (session_end - now) / 60.0

        if (
            self.convergence_fired_at is None
            and 0 < remaining <= self.convergence_minutes
        ):
            self.convergence_fired_at = now
            hits.append(GateHit(
                TriggerType.PACING_GATE_CONVERGENCE,
                {
                    "remaining_minutes": round_half_up(remaining),
                    "open_threads": list(open_threads),
                },
            ))
            logger.info(f"Convergence gate: {remaining:.1f} min remaining")

        if not self.denouement_fired and 0 < remaining <= self.denouement_minutes:
            self.denouement_fired = True
            hits.append(GateHit(
                TriggerType.PACING_GATE_DENOUEMENT,
                {"remaining_minutes": round_half_up(remaining)},
            ))
            logger.info(f"Denouement gate: {remaining:.1f} min remaining")

        if (
            self.convergence_fired_at is not None
            and not self.escalation_fired
            and now - self.convergence_fired_at >= self.escalation_delay_minutes * 60.0
            and current_act < self.final_act
        ):
            self.escalation_fired = True
            hits.append(GateHit(
                TriggerType.PACING_GATE_CONVERGENCE,
                {
                    "remaining_minutes": round_half_up(remaining),
                    "escalation": True,
                    "current_act": current_act,
                },
            ))
            logger.info(f"Convergence escalation: still in act {current_act}")

        return hits
