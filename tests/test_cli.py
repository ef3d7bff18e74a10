"""Integration tests for CLI commands."""

import json
from pathlib import Path

import pytest
import toml
from typer.testing import CliRunner

from conftest import write_files
from codeintel_cli.cli import app

runner = CliRunner()


def _run(repo: Path, *args):
    return runner.invoke(app, ["--repo", str(repo), *args])


class TestGlobalOptions:
    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "CodeIntel CLI v0.3.0" in result.stdout

    def test_missing_repo_rejected(self, temp_dir):
        result = _run(temp_dir / "nope", "stats")
        assert result.exit_code != 0


class TestGraphCommands:
    def test_graph_summary_and_output(self, sample_repo, temp_dir):
        output = temp_dir / "graph.json"
        result = _run(sample_repo, "graph", ".", "--node-type", "file", "--edge-type", "imports", "-o", str(output))

        assert result.exit_code == 0, result.output
        assert "Dependency graph" in result.stdout
        assert "imports" in result.stdout
        data = json.loads(output.read_text())
        assert len(data["nodes"]) == 10
        assert len(data["edges"]) == 8

    def test_graph_rejects_unknown_layout(self, sample_repo):
        result = _run(sample_repo, "graph", ".", "--layout", "spiral")
        assert result.exit_code != 0

    def test_graph_rejects_unknown_node_type(self, sample_repo):
        result = _run(sample_repo, "graph", ".", "--node-type", "package")
        assert result.exit_code != 0

    def test_graph_missing_root(self, sample_repo):
        result = _run(sample_repo, "graph", "no/such/dir")

        assert result.exit_code == 1
        assert "root path not found" in result.stdout

    def test_stats(self, sample_repo):
        result = _run(sample_repo, "stats", "src")

        assert result.exit_code == 0, result.output
        assert "density" in result.stdout
        assert "by importance" in result.stdout

    def test_cycles(self, sample_repo):
        result = _run(sample_repo, "cycles", "src")

        assert result.exit_code == 0, result.output
        assert "src_cycle_a.ts" in result.stdout
        assert "Strongly connected components (1)" in result.stdout

    def test_no_cycles(self, sample_repo):
        result = _run(sample_repo, "cycles", "pkg")

        assert result.exit_code == 0
        assert "No circular dependencies" in result.stdout

    @pytest.mark.parametrize("fmt, marker", [
        ("json", '"nodes"'),
        ("dot", "digraph CodeIntel"),
        ("html", "vis-network"),
    ])
    def test_export(self, sample_repo, temp_dir, fmt, marker):
        output = temp_dir / f"graph.{fmt}"
        result = _run(sample_repo, "export", "src", str(output), "--format", fmt)

        assert result.exit_code == 0, result.output
        assert marker in output.read_text()

    def test_export_rejects_unknown_format(self, sample_repo, temp_dir):
        result = _run(sample_repo, "export", "src", str(temp_dir / "g.svg"), "--format", "svg")
        assert result.exit_code != 0


class TestAnalysisCommands:
    @pytest.fixture
    def impact_repo(self, temp_dir):
        calls = "\n".join(f"  check{i} = validateUser(x{i});" for i in range(8))
        return write_files(temp_dir / "impact", {
            "utils/validate.ts": "export function validateUser(x: string) {\n  return !!x;\n}\n",
            "core/server.ts": f"export function boot() {{\n{calls}\n}}\n",
        })

    def test_impact_table(self, impact_repo):
        result = _run(impact_repo, "impact", "validateUser")

        assert result.exit_code == 0, result.output
        assert "CRITICAL" in result.stdout
        assert "(utils/validate.ts)" in result.stdout

    def test_impact_json(self, impact_repo):
        result = _run(impact_repo, "impact", "validateUser", "--file", "utils/validate.ts", "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["targetFile"] == "utils/validate.ts"
        assert data["impacts"][0]["impactLevel"] == "CRITICAL"
        assert data["impacts"][0]["impactScore"] == 160

    def test_impact_unknown_symbol(self, impact_repo):
        result = _run(impact_repo, "impact", "missingThing")

        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_architecture(self, sample_repo):
        result = _run(sample_repo, "architecture")

        assert result.exit_code == 0, result.output
        assert "/100" in result.stdout
        assert "circular-dependency" in result.stdout

    def test_architecture_issue_filter(self, sample_repo):
        result = _run(sample_repo, "architecture", "src", "--issue", "dead-code")

        assert result.exit_code == 0, result.output
        assert "circular-dependency" not in result.stdout
        assert "dead-code" in result.stdout

    def test_architecture_rejects_unknown_issue(self, sample_repo):
        result = _run(sample_repo, "architecture", "--issue", "spaghetti")
        assert result.exit_code != 0


class TestConfigCommands:
    def test_set_and_show_llm(self, _isolated_config):
        result = runner.invoke(app, ["set-llm", "ollama", "--model", "llama3"])
        assert result.exit_code == 0, result.output

        saved = toml.load(_isolated_config)
        assert saved["llm"]["provider"] == "ollama"
        assert saved["llm"]["model"] == "llama3"
        assert saved["llm"]["endpoint"] == "http://127.0.0.1:11434/api/generate"

        shown = runner.invoke(app, ["show-llm"])
        assert shown.exit_code == 0
        assert "llama3" in shown.stdout

    def test_cloud_provider_needs_key(self, _isolated_config):
        result = runner.invoke(app, ["set-llm", "openai"])

        assert result.exit_code == 1
        assert not _isolated_config.exists()

    def test_unknown_provider(self):
        result = runner.invoke(app, ["set-llm", "mystery"])
        assert result.exit_code == 1

    def test_api_key_masked(self, _isolated_config):
        runner.invoke(app, ["set-llm", "anthropic", "--api-key", "sk-ant-1234567890abcdef"])
        shown = runner.invoke(app, ["show-llm"])

        assert "sk-ant-1" in shown.stdout
        assert "1234567890abcdef" not in shown.stdout

    def test_set_knowledge_preserves_llm(self, _isolated_config):
        runner.invoke(app, ["set-llm", "ollama", "--model", "llama3"])
        result = runner.invoke(app, ["set-knowledge", "http://kb.local", "--api-key", "tok"])

        assert result.exit_code == 0, result.output
        saved = toml.load(_isolated_config)
        assert saved["knowledge"] == {"endpoint": "http://kb.local", "api_key": "tok"}
        assert saved["llm"]["model"] == "llama3"


class TestImpactRipple:
    @pytest.fixture
    def ripple_repo(self, temp_dir):
        calls = "\n".join(f"  check{i} = validateUser(x{i});" for i in range(8))
        return write_files(temp_dir / "ripple", {
            "utils/validate.ts": "export function validateUser(x: string) {\n  return !!x;\n}\n",
            "core/server.ts": f"export function boot() {{\n{calls}\n}}\n",
            "core/server.test.ts": "validateUser('a');\nvalidateUser('b');\n",
        })

    def test_ripple_json(self, ripple_repo):
        result = _run(ripple_repo, "impact", "validateUser", "--file", "./utils/validate.ts", "--ripple", "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["filePath"] == "utils/validate.ts"
        assert data["layers"][0]["severity"] == "critical"
        paths = {n["filePath"] for layer in data["layers"] for n in layer["nodes"]}
        assert "core/server.test.ts" not in paths

    def test_ripple_include_tests(self, ripple_repo):
        result = _run(ripple_repo, "impact", "validateUser", "--ripple", "--json",
                      "--include-tests", "--min-score", "0")

        assert result.exit_code == 0, result.output
        paths = {n["filePath"] for layer in json.loads(result.stdout)["layers"] for n in layer["nodes"]}
        assert "core/server.test.ts" in paths

    def test_ripple_table(self, ripple_repo):
        result = _run(ripple_repo, "impact", "validateUser", "--ripple")

        assert result.exit_code == 0, result.output
        assert "Impact ripple" in result.stdout
        assert "critical" in result.stdout
