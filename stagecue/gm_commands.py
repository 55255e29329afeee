"""
GM override commands typed into game chat.

Format: ``/command [args...]``. Unknown commands and malformed arguments are
ignored: a bad command never raises and never changes state.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Callable, Optional, TYPE_CHECKING

from .config import parse_session_end_time
from .pacing import PacingStateManager
from .types import (
    ActivationSource,
    AssistantState,
    ClimaxProximity,
    EngagementLevel,
    GmCommand,
    GmCommandType,
    SeparationStatus,
)

if TYPE_CHECKING:
    from .classifier import TriggerDetector

logger = logging.getLogger(__name__)

COMMAND_PATTERN = re.compile(r"^/(\w+)\s*(.*)", re.DOTALL)
_DIGITS = re.compile(r"^\d+$")


def parse_gm_command(text: str, timestamp: str) -> Optional[GmCommand]:
    """
    Parse a chat message into a GmCommand.

    Returns:
        The command, or None if the message is not a known command
    """
    trimmed = (text or "").strip()
    match = COMMAND_PATTERN.match(trimmed)
    if not match:
        return None

    try:
        command_type = GmCommandType(match.group(1).lower())
    except ValueError:
        return None

    args_str = match.group(2).strip()
    return GmCommand(
        type=command_type,
        args=args_str.split() if args_str else [],
        raw=trimmed,
        timestamp=timestamp,
    )


def _int_or(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


class GmCommandProcessor:
    """
    Applies parsed GM commands to the state machine and detector.

    Activation requests go through ``detector.activate`` so every activation
    path raises the same signal. ``/npc refresh`` is delegated to the
    ``on_npc_refresh`` callback, which owns cache building.
    """

    def __init__(
        self,
        pacing: PacingStateManager,
        detector: "TriggerDetector",
        on_npc_refresh: Optional[Callable[[], None]] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.pacing = pacing
        self.detector = detector
        self.on_npc_refresh = on_npc_refresh
        self._now = now

    def apply(self, cmd: GmCommand) -> bool:
        """
        Apply one command.

        Returns:
            True if the command changed anything or triggered an action
        """
        logger.info(f"GM command: {cmd.raw}")
        handler = getattr(self, f"_cmd_{cmd.type.value}", None)
        if handler is None:
            return False
        applied = handler(cmd.args)
        if not applied:
            logger.debug(f"GM command ignored: {cmd.raw}")
        return applied

    def _activate_if_pregame(self) -> None:
        if self.pacing.assistant_state == AssistantState.PREGAME:
            self.detector.activate(ActivationSource.COMMAND)

    def _cmd_act(self, args) -> bool:
        if not args or not _DIGITS.match(args[0]):
            return False
        planned = _int_or(args[1] if len(args) > 1 else None, 0)
        self.pacing.advance_act(int(args[0]), planned)
        self._activate_if_pregame()
        return True

    def _cmd_scene(self, args) -> bool:
        if not args:
            return False
        planned = 0
        if len(args) > 1 and _DIGITS.match(args[-1]):
            planned = int(args[-1])
            name = " ".join(args[:-1])
        else:
            name = " ".join(args)
        self.pacing.advance_scene(name, planned)
        self._activate_if_pregame()
        return True

    def _cmd_spotlight(self, args) -> bool:
        if not args:
            return False
        debt = _int_or(args[1] if len(args) > 1 else None, 0)
        self.pacing.set_spotlight(args[0], debt)
        return True

    def _cmd_engagement(self, args) -> bool:
        if len(args) < 2:
            return False
        try:
            level = EngagementLevel(args[1].upper())
        except ValueError:
            return False
        self.pacing.set_engagement(args[0], level)
        return True

    def _cmd_separation(self, args) -> bool:
        if not args:
            return False
        try:
            status = SeparationStatus(args[0].upper())
        except ValueError:
            return False
        self.pacing.set_separation(status)
        return True

    def _cmd_climax(self, args) -> bool:
        if not args:
            return False
        try:
            proximity = ClimaxProximity(args[0].upper())
        except ValueError:
            return False
        self.pacing.set_climax_proximity(proximity)
        return True

    def _cmd_seed(self, args) -> bool:
        name = " ".join(args)
        if not name:
            return False
        self.pacing.add_seed(name, self.pacing.state.current_scene)
        return True

    def _cmd_sleep(self, args) -> bool:
        return self.detector.sleep("GM command")

    def _cmd_wake(self, args) -> bool:
        return self.detector.activate(ActivationSource.COMMAND)

    def _cmd_endtime(self, args) -> bool:
        end_time = parse_session_end_time(
            " ".join(args), now=self._now() if self._now else None
        )
        if end_time is None:
            return False
        self.pacing.set_session_end_time(end_time)
        self.detector.reset_pacing_gates()
        logger.info(f"Session end time set to {end_time}")
        return True

    def _cmd_npc(self, args) -> bool:
        if not args:
            return False
        subcommand = args[0].lower()

        if subcommand == "refresh":
            if self.on_npc_refresh is None:
                logger.warning("NPC refresh requested but no cache builder is configured")
                return False
            self.on_npc_refresh()
            return True

        if subcommand == "serve" and len(args) > 1:
            entry = self.detector.find_npc(" ".join(args[1:]))
            if entry is None:
                logger.warning(f"No NPC cache entry for {' '.join(args[1:])!r}")
                return False
            entry.reset_served()
            logger.info(f"NPC {entry.display_name} re-armed for first appearance")
            return True

        return False
