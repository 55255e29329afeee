"""
Tests for offline replay and the command line entry point.
"""
import json

import pytest

from stagecue import cli
from stagecue.config import AssistantConfig
from stagecue.replay import SessionReplayer, read_records
from stagecue.types import TriggerPriority, TriggerType


RECORDING = [
    {"t": 0, "kind": "chat", "content": "/scene Docks"},
    {"t": 1, "kind": "transcript",
     "segments": [{"text": "meanwhile, back at the ship", "user_id": "gm"}]},
    {"t": 2, "kind": "transcript",
     "segments": [{"text": "who is the duke again?", "user_id": "gm"}]},
    {"t": 60, "kind": "tick"},
]


@pytest.fixture
def recording(tmp_path):
    path = tmp_path / "session.jsonl"
    path.write_text("\n".join(json.dumps(r) for r in RECORDING) + "\n")
    return str(path)


class TestReadRecords:

    def test_skips_bad_lines(self, tmp_path):
        path = tmp_path / "messy.jsonl"
        path.write_text(
            '{"t": 1, "kind": "tick"}\n'
            "\n"
            "not json\n"
            '{"t": 2}\n'
            '{"t": "1970-01-01T00:00:03+00:00", "kind": "chat", "content": "/sleep"}\n'
        )
        records = list(read_records(str(path)))
        assert [(r.t, r.kind) for r in records] == [(1.0, "tick"), (3.0, "chat")]
        assert records[1].payload == {"content": "/sleep"}


class TestSessionReplayer:

    def test_question_flushes_pending_transition(self, recording, fuzzy_table):
        replayer = SessionReplayer(AssistantConfig(gm_identifier="gm"), fuzzy_table)
        batches = replayer.run(read_records(recording))

        assert len(batches) == 1
        assert batches[0].priorities == [TriggerPriority.P1, TriggerPriority.P2]
        assert [e.type for e in batches[0].events] == [
            TriggerType.GM_QUESTION,
            TriggerType.SCENE_TRANSITION,
        ]
        assert replayer.clock() == 60.0

    def test_drain_reaches_silence_alert(self, recording, fuzzy_table):
        replayer = SessionReplayer(AssistantConfig(gm_identifier="gm"), fuzzy_table)
        batches = replayer.run(read_records(recording), drain_seconds=300)

        assert len(batches) == 2
        silence = batches[1].events[0]
        assert silence.type == TriggerType.SILENCE_DETECTION
        assert silence.source == "silence"

    def test_empty_recording(self, fuzzy_table):
        replayer = SessionReplayer(fuzzy_table=fuzzy_table)
        assert replayer.run([], drain_seconds=60) == []
        assert replayer.runtime.pacing.state.session_start is None


class TestCli:

    def test_replay_prints_batches(self, recording, monkeypatch, capsys):
        monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
        assert cli.main(["replay", recording]) == 0

        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 1
        batch = json.loads(lines[0])
        assert [e["type"] for e in batch["events"]] == ["gm_question", "scene_transition"]

    def test_replay_stats(self, recording, monkeypatch, capsys):
        monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
        cli.main(["replay", recording, "--stats"])
        err = capsys.readouterr().err
        stats = json.loads(err[err.index("{"):])
        assert stats["batches_flushed"] == 1

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.main([])
