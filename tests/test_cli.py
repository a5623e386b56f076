"""End-to-end CLI tests driving the fake agent script as a real subprocess."""

import json

import pytest
import yaml

from capability_eval.cli import build_parser, main


@pytest.fixture
def workspace(tmp_path, monkeypatch, fake_agent_argv):
    """Config pointing the agent command at the fake agent, with an empty HOME."""
    command, *args = fake_agent_argv
    config_path = tmp_path / "capeval.yaml"
    config_path.write_text(
        yaml.safe_dump(
            {
                "agent": {"command": command, "args": args},
                "execution": {"turn_timeout_seconds": 60, "warmup_timeout_seconds": 60},
                "persona": {"timeout_seconds": 60},
                "judge": {"timeout_seconds": 60},
                "data_root": str(tmp_path / "evals"),
            }
        )
    )
    monkeypatch.setenv("CAPEVAL_CONFIG", str(config_path))
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))

    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


def new_experiment(capsys, workspace, name="demo") -> str:
    assert main(["new", name, str(workspace)]) == 0
    return capsys.readouterr().out.strip()


class TestParser:
    def test_mode_choices(self):
        args = build_parser().parse_args(["execute", "abc", "--mode", "parallel", "--yes"])
        assert args.mode == "parallel"
        assert args.yes

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestExperimentCommands:
    def test_new_list_show(self, capsys, workspace):
        exp_id = new_experiment(capsys, workspace)
        assert len(exp_id) == 36

        assert main(["list"]) == 0
        out = capsys.readouterr().out
        assert exp_id[:8] in out
        assert "analysis=pending" in out

        assert main(["show", "demo"]) == 0
        assert f"Workspace: {workspace.resolve()}" in capsys.readouterr().out

    def test_list_empty(self, capsys, workspace):
        assert main(["list"]) == 0
        assert "No experiments." in capsys.readouterr().out

    def test_unknown_experiment(self, capsys, workspace):
        assert main(["show", "missing"]) == 1
        assert "experiment not found: missing" in capsys.readouterr().err

    def test_export_without_report_fails(self, capsys, workspace):
        exp_id = new_experiment(capsys, workspace)
        assert main(["export", exp_id]) == 1
        assert "has no report" in capsys.readouterr().err

    def test_delete(self, capsys, workspace, tmp_path):
        exp_id = new_experiment(capsys, workspace)
        assert main(["delete", exp_id[:8]]) == 0
        assert not (tmp_path / "evals" / exp_id).exists()


class TestStageCommands:
    def test_discover_select_and_rerun_guard(self, capsys, workspace):
        exp_id = new_experiment(capsys, workspace)

        assert main(["discover", exp_id]) == 0
        assert "fake-server" in capsys.readouterr().out

        assert main(["select", exp_id, "fake-server"]) == 0
        assert "1 of 1 components selected" in capsys.readouterr().out

        assert main(["generate", exp_id]) == 0
        assert "4 scenarios generated" in capsys.readouterr().out

        assert main(["discover", exp_id]) == 2
        assert "Pass --yes to continue" in capsys.readouterr().err

        assert main(["discover", exp_id, "--yes"]) == 0

    def test_generate_before_discover_fails(self, capsys, workspace):
        exp_id = new_experiment(capsys, workspace)
        assert main(["generate", exp_id]) == 1
        assert "No components selected" in capsys.readouterr().err


class TestFullRun:
    def test_run_and_export(self, capsys, workspace, tmp_path):
        exp_id = new_experiment(capsys, workspace)

        assert main(["run", exp_id, "--mode", "parallel"]) == 0
        assert "Score 8.0/10, lift +3.0, cost $0.0800" in capsys.readouterr().out

        exp_dir = tmp_path / "evals" / exp_id
        stored = json.loads((exp_dir / "experiment.json").read_text())
        assert [s["status"] for s in stored["steps"]] == ["completed"] * 4
        assert len(stored["runs"]) == 8
        metrics = stored["report"]["component_metrics"][0]
        assert metrics["false_positives"] == 1
        assert metrics["trigger_rate"] == 1.0
        assert metrics["accuracy"] == 0.75
        assert len(list((exp_dir / "runs").glob("*.txt"))) == 8
        assert len(list((exp_dir / "logs").glob("*.md"))) == 8

        without = [r for r in stored["runs"] if r["variant"] == "without_tools"]
        assert all(r["tool_invocations"] == [] for r in without)

        assert main(["export", exp_id, "--output", str(tmp_path / "out")]) == 0
        md = (tmp_path / "out" / "report.md").read_text()
        assert "| fake-server | 100% | 75% | 8.0 | +3.0 | 4 |" in md
        assert (tmp_path / "out" / "report-export.json").exists()
