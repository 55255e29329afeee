"""
Tests for the standalone detectors the classifier composes.
"""
import json

from stagecue.detection import (
    AutoActivator,
    FlowTracker,
    HesitationWatch,
    NpcSpotter,
    PacingGates,
    SceneSpotter,
    SilenceWatch,
    compile_terms,
    find_terms,
    load_fuzzy_table,
)
from stagecue.detection.fuzzy import DEFAULT_FUZZY_PATH
from stagecue.detection.matchers import DEFAULT_RULES
from stagecue.types import NpcCacheEntry, SceneIndexEntry, TriggerType


class TestMatchers:

    def test_whole_words_only(self):
        terms = compile_terms(["um", "Er", "let me think"])
        assert find_terms("um, where was I", terms) == ["um"]
        assert find_terms("my umbrella is wet", terms) == []
        assert find_terms("you enter the tavern", terms) == []
        assert find_terms("LET ME THINK about that", terms) == ["let me think"]

    def test_default_rules(self):
        question, scene, act = DEFAULT_RULES
        assert question.matches("Remind me how grappling works")
        assert not question.active_only
        assert question.source is None
        assert scene.matches("Meanwhile, at the docks")
        assert not scene.matches("the screenwriter cut toast")
        assert act.matches("that's the end of act two")


class TestFuzzyTable:

    def test_packaged_table(self):
        table = load_fuzzy_table(DEFAULT_FUZZY_PATH)
        assert table["dow crush"] == "daokresh"
        assert not any(key.startswith("_") for key in table)

    def test_json_table_normalized(self, tmp_path):
        path = tmp_path / "fuzzy.json"
        path.write_text(json.dumps({
            "_comment": "ignored",
            "Dow Crush": "Daokresh",
            "blank": "  ",
            "number": 3,
        }))
        assert load_fuzzy_table(str(path)) == {"dow crush": "daokresh"}

    def test_failures_give_empty_table(self, tmp_path):
        assert load_fuzzy_table(str(tmp_path / "missing.yaml")) == {}
        bad = tmp_path / "bad.yaml"
        bad.write_text("key: [unclosed\n")
        assert load_fuzzy_table(str(bad)) == {}
        listing = tmp_path / "list.yaml"
        listing.write_text("- a\n")
        assert load_fuzzy_table(str(listing)) == {}


class TestFlowTracker:

    def test_needs_segments_and_speakers(self):
        flow = FlowTracker()
        for i in range(4):
            flow.record("alice", float(i))
        assert not flow.is_flowing(4.0)

        flow.record("bob", 5.0)
        assert flow.is_flowing(5.0)

    def test_window_expiry(self):
        flow = FlowTracker()
        for i, speaker in enumerate(["a", "b", "a", "b"]):
            flow.record(speaker, float(i))
        assert flow.is_flowing(10.0)
        assert not flow.is_flowing(60.0)
        assert len(flow) == 3

    def test_unknown_speaker_not_recorded(self):
        flow = FlowTracker()
        flow.record(None, 0.0)
        assert len(flow) == 0


class TestAutoActivator:

    def test_distinct_terms_reach_threshold(self, fuzzy_table):
        activator = AutoActivator(fuzzy_table, window_seconds=300, threshold=3)
        assert not activator.observe("so darwin walks in", 0.0)
        assert not activator.observe("darwin again, and Darjin", 10.0)
        assert activator.distinct_terms() == ["darjin"]
        assert not activator.observe("the dow crush fleet", 20.0)
        assert activator.observe("near belton", 30.0)
        assert activator.distinct_terms() == []

    def test_terms_expire(self, fuzzy_table):
        activator = AutoActivator(fuzzy_table, window_seconds=300, threshold=3)
        activator.observe("darwin", 0.0)
        activator.observe("belton", 100.0)
        assert not activator.observe("calamine", 300.0)
        assert activator.distinct_terms() == ["veltin", "kalamynth"]

    def test_short_terms_ignored(self):
        activator = AutoActivator({"ox": "oxa"}, min_term_length=4)
        assert not activator.enabled
        assert activator.scan("ox and oxa") == []

    def test_empty_table_disabled(self):
        assert not AutoActivator({}).enabled


class TestSilenceWatch:

    def test_thresholds(self):
        watch = SilenceWatch(alert_seconds=90, sleep_seconds=900)
        assert watch.silence_for(100.0) is None
        assert not watch.should_alert(100.0)

        watch.heard_gm(0.0)
        assert not watch.should_alert(89.0)
        assert watch.should_alert(90.0)
        watch.mark_alerted()
        assert not watch.should_alert(200.0)
        assert watch.should_sleep(900.0)

    def test_speech_rearms_alert(self):
        watch = SilenceWatch(alert_seconds=90)
        watch.heard_gm(0.0)
        watch.mark_alerted()
        watch.heard_gm(100.0)
        assert watch.should_alert(190.0)


class TestHesitationWatch:

    def test_due_once_after_gap(self):
        watch = HesitationWatch(["uh"], gap_seconds=5)
        watch.on_gm_speech("the captain is, uh", 100.0)
        assert watch.due(104.0) is None
        assert watch.due(105.5) == ("the captain is, uh", 5.5)
        assert watch.due(120.0) is None

    def test_plain_speech_clears_marker(self):
        watch = HesitationWatch(["uh"], gap_seconds=5)
        watch.on_gm_speech("uh", 100.0)
        watch.on_gm_speech("right, the captain is Mara", 102.0)
        assert watch.due(110.0) is None

    def test_other_speaker_clears_marker(self):
        watch = HesitationWatch(["uh"], gap_seconds=5)
        watch.on_gm_speech("his name is uh", 100.0)
        watch.on_other_speech()
        assert watch.due(110.0) is None

    def test_no_substring_matches(self):
        watch = HesitationWatch(["um"], gap_seconds=5)
        watch.on_gm_speech("grab your umbrella", 0.0)
        assert watch.pending is None


class TestPacingGates:

    END = 10_000.0

    def test_gates_fire_once(self):
        gates = PacingGates()
        assert gates.check(self.END - 50 * 60, self.END, 1, []) == []

        hits = gates.check(self.END - 44 * 60, self.END, 1, ["relic"])
        assert [h.trigger_type for h in hits] == [TriggerType.PACING_GATE_CONVERGENCE]
        assert hits[0].data == {"remaining_minutes": 44, "open_threads": ["relic"]}
        assert gates.check(self.END - 43 * 60, self.END, 1, []) == []

        hits = gates.check(self.END - 15 * 60, self.END, 3, [])
        assert [h.trigger_type for h in hits] == [TriggerType.PACING_GATE_DENOUEMENT]
        assert hits[0].data == {"remaining_minutes": 15}

    def test_escalation_when_short_of_final_act(self):
        gates = PacingGates()
        gates.check(self.END - 45 * 60, self.END, 1, [])
        hits = gates.check(self.END - 30 * 60, self.END, 2, [])
        assert len(hits) == 1
        assert hits[0].data == {"remaining_minutes": 30, "escalation": True, "current_act": 2}
        assert gates.check(self.END - 29 * 60, self.END, 2, []) == []

    def test_no_escalation_in_final_act(self):
        gates = PacingGates()
        gates.check(self.END - 45 * 60, self.END, 3, [])
        assert gates.check(self.END - 29 * 60, self.END, 3, []) == []

    def test_past_end_and_no_end(self):
        gates = PacingGates()
        assert gates.check(self.END + 60, self.END, 1, []) == []
        assert gates.check(0.0, None, 1, []) == []

    def test_reset_rearms(self):
        gates = PacingGates()
        gates.check(self.END - 10 * 60, self.END, 3, [])
        gates.reset()
        hits = gates.check(self.END - 10 * 60, self.END, 3, [])
        assert len(hits) == 2


class TestNpcSpotter:

    def test_aliases_and_garbled_forms(self, fuzzy_table):
        spotter = NpcSpotter(fuzzy_table)
        captain = NpcCacheEntry(key="daokresh", display_name="Captain Daokresh")
        mara = NpcCacheEntry(key="mara", display_name="Mara Vell", aliases=["Mara", "the smuggler"])
        spotter.install([captain, mara])

        assert spotter.spot("the dow crush ship docks", "t1") == [captain]
        assert captain.served and captain.last_served_at == "t1"
        assert spotter.spot("Daokresh again", "t2") == []

        assert spotter.spot("the smuggler waves", "t3") == [mara]

    def test_find(self):
        spotter = NpcSpotter()
        entry = NpcCacheEntry(key="mara", display_name="Mara Vell", aliases=["Vell"])
        spotter.install([entry])
        assert spotter.find("VELL") is entry
        assert spotter.find("mara") is entry
        assert spotter.find("nobody") is None


class TestSceneSpotter:

    def test_needs_two_keywords_in_window(self):
        spotter = SceneSpotter()
        docks = SceneIndexEntry(id="s1", title="The Docks", keywords=["pier", "crane", "fog"])
        spotter.install([docks])

        assert spotter.observe("the pier is quiet", 0.0, "t0") == []
        assert spotter.observe("the pier again", 10.0, "t1") == []
        spotted = spotter.observe("a crane creaks in the fog", 20.0, "t2")
        assert spotted == [(docks, ["crane", "fog", "pier"])]
        assert docks.served_at == "t2"
        assert spotter.observe("pier crane fog", 30.0, "t3") == []

    def test_keywords_expire(self):
        spotter = SceneSpotter(window_seconds=180)
        docks = SceneIndexEntry(id="s1", title="The Docks", keywords=["pier", "crane"])
        spotter.install([docks])
        spotter.observe("pier", 0.0, "t0")
        assert spotter.observe("crane", 180.0, "t1") == []
        assert not docks.served
