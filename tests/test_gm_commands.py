"""
Tests for GM chat commands.
"""
from datetime import datetime, timezone

import pytest

from stagecue.gm_commands import GmCommandProcessor, parse_gm_command
from stagecue.types import (
    ActivationSource,
    AssistantState,
    ClimaxProximity,
    EngagementLevel,
    GmCommandType,
    NpcCacheEntry,
    SeparationStatus,
)

TS = "2024-01-01T20:00:00+00:00"


@pytest.fixture
def refreshes():
    return []


@pytest.fixture
def processor(pacing, detector, refreshes):
    return GmCommandProcessor(
        pacing,
        detector,
        on_npc_refresh=lambda: refreshes.append(True),
        now=lambda: datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc),
    )


def run(processor, text):
    cmd = parse_gm_command(text, TS)
    assert cmd is not None, text
    return processor.apply(cmd)


class TestParsing:

    def test_parse(self):
        cmd = parse_gm_command("  /Scene  The Old Mill 20 ", TS)
        assert cmd.type == GmCommandType.SCENE
        assert cmd.args == ["The", "Old", "Mill", "20"]
        assert cmd.raw == "/Scene  The Old Mill 20"
        assert cmd.timestamp == TS

    def test_not_commands(self):
        assert parse_gm_command("hello there", TS) is None
        assert parse_gm_command("/dance wildly", TS) is None
        assert parse_gm_command("", TS) is None

    def test_no_args(self):
        assert parse_gm_command("/sleep", TS).args == []


class TestActAndScene:

    def test_act_activates_from_pregame(self, processor, pacing, detector):
        activations = []
        detector.on_activated(activations.append)

        assert run(processor, "/act 2 60")
        assert pacing.state.current_act == 2
        assert pacing.state.act_timing.planned_max_minutes == 60
        assert pacing.assistant_state == AssistantState.ACTIVE
        assert pacing.state.activation_source == ActivationSource.COMMAND
        assert activations == [ActivationSource.COMMAND]

    def test_act_requires_number(self, processor, pacing):
        assert not run(processor, "/act two")
        assert not run(processor, "/act")
        assert pacing.state.current_act == 1
        assert pacing.assistant_state == AssistantState.PREGAME

    def test_scene_with_planned_minutes(self, processor, pacing):
        assert run(processor, "/scene The Old Mill 20")
        assert pacing.state.current_scene == "The Old Mill"
        assert pacing.state.scene_timing.planned_max_minutes == 20

    def test_scene_without_minutes(self, processor, pacing):
        assert run(processor, "/scene Docks")
        assert pacing.state.current_scene == "Docks"
        assert pacing.state.scene_timing.planned_max_minutes == 0

    def test_scene_needs_name(self, processor, pacing):
        assert not run(processor, "/scene")
        assert pacing.assistant_state == AssistantState.PREGAME


class TestBookkeeping:

    def test_spotlight(self, processor, pacing):
        assert run(processor, "/spotlight Alice 3")
        assert pacing.state.spotlight_debt == {"Alice": 3}
        assert pacing.state.players_without_recent_spotlight == ["Alice"]

    def test_engagement(self, processor, pacing):
        assert run(processor, "/engagement Bob low")
        assert pacing.state.engagement_signals == {"Bob": EngagementLevel.LOW}
        assert not run(processor, "/engagement Bob bored")
        assert not run(processor, "/engagement Bob")

    def test_separation_and_climax(self, processor, pacing):
        assert run(processor, "/separation split")
        assert run(processor, "/climax approaching")
        assert not run(processor, "/climax soon")
        assert pacing.state.separation_status == SeparationStatus.SPLIT
        assert pacing.state.climax_proximity == ClimaxProximity.APPROACHING

    def test_seed(self, processor, pacing):
        run(processor, "/scene Docks")
        assert run(processor, "/seed the red key")
        seed = pacing.state.planted_seeds[0]
        assert seed.name == "the red key"
        assert seed.planted_in_scene == "Docks"
        assert not run(processor, "/seed")


class TestLifecycleCommands:

    def test_sleep_and_wake(self, processor, pacing, detector):
        assert not run(processor, "/sleep")

        detector.activate(ActivationSource.GAME_ENGINE)
        assert run(processor, "/sleep")
        assert pacing.assistant_state == AssistantState.SLEEP

        assert run(processor, "/wake")
        assert pacing.assistant_state == AssistantState.ACTIVE
        assert pacing.state.activation_source == ActivationSource.GAME_ENGINE
        assert not run(processor, "/wake")

    def test_endtime(self, processor, pacing):
        assert run(processor, "/endtime 23:30")
        assert pacing.state.session_end_time == "2024-01-01T23:30:00+00:00"

    def test_endtime_rejects_garbage(self, processor, pacing):
        assert not run(processor, "/endtime later")
        assert pacing.state.session_end_time is None


class TestNpcCommands:

    def test_refresh(self, processor, refreshes):
        assert run(processor, "/npc refresh")
        assert refreshes == [True]

    def test_refresh_without_builder(self, pacing, detector):
        processor = GmCommandProcessor(pacing, detector)
        assert not run(processor, "/npc refresh")

    def test_serve_rearms_entry(self, processor, detector):
        entry = NpcCacheEntry(key="mara", display_name="Mara Vell", aliases=["Mara Vell"])
        entry.mark_served(TS)
        detector.set_npc_cache([entry])

        assert run(processor, "/npc serve mara vell")
        assert not entry.served
        assert not run(processor, "/npc serve nobody")
        assert not run(processor, "/npc dance")
        assert not run(processor, "/npc")
