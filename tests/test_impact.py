"""Tests for change-impact analysis."""

from pathlib import Path

import pytest

from conftest import StubKnowledgeSource, write_files
from codeintel_cli import knowledge as knowledge_module
from codeintel_cli.errors import NotFoundError
from codeintel_cli.impact import (
    ImpactAnalyzer,
    build_ripple,
    classify_usage,
    file_criticality,
    impact_level,
    impact_score,
    parse_entity_id,
    scan_file_for_usages,
)
from codeintel_cli.knowledge import HttpKnowledgeSource
from codeintel_cli.models import ImpactAnalysisResult, ImpactItem, SearchResult, Usage
from codeintel_cli.parser import TreeSitterSourceParser

SERVER_CALLS = "\n".join(f"  const r{i} = validateUser(input{i});" for i in range(8))

REPO = {
    "utils/validate.ts": "export function validateUser(input: string): boolean {\n  return input.length > 0;\n}\n",
    "core/server.ts": f"export function boot() {{\n{SERVER_CALLS}\n}}\n",
    "services/api.ts": (
        'import { validateUser } from "../utils/validate";\n'
        "\n"
        "// validateUser is re-checked here\n"
        "export const check = (s: string) => validateUser(s);\n"
    ),
    "lib/unrelated.ts": "export const nothing = 1;\n",
}


@pytest.fixture
def impact_repo(temp_dir: Path) -> Path:
    return write_files(temp_dir / "impact", REPO)


def _analyzer(repo: Path, knowledge=None) -> ImpactAnalyzer:
    return ImpactAnalyzer(TreeSitterSourceParser(), knowledge or StubKnowledgeSource(), repo)


class TestScoring:
    @pytest.mark.parametrize("path, expected", [
        ("src/app.test.ts", 0.3),
        ("tests/test_models.py", 0.3),
        ("pkg/test_utils.py", 0.3),
        ("webpack.config.js", 0.5),
        ("src/core/server.ts", 2.0),
        ("src/api/routes.ts", 1.5),
        ("src/lib/strings.ts", 1.0),
    ])
    def test_file_criticality(self, path, expected):
        assert file_criticality(path) == expected

    def test_core_module_with_eight_usages_is_critical(self):
        score = impact_score(1, 8, "core/server.ts")
        assert score == pytest.approx(160)
        assert impact_level(score, 1, "core/server.ts") == "CRITICAL"

    def test_usage_multiplier_caps_at_ten(self):
        assert impact_score(2, 25, "lib/x.ts") == pytest.approx(50)

    @pytest.mark.parametrize("score, depth, path, level", [
        (90, 1, "lib/x.ts", "HIGH"),
        (60, 1, "lib/x.ts", "HIGH"),
        (10, 2, "lib/x.ts", "MEDIUM"),
        (25, 3, "lib/x.ts", "MEDIUM"),
        (5, 3, "lib/x.ts", "LOW"),
    ])
    def test_impact_level(self, score, depth, path, level):
        assert impact_level(score, depth, path) == level


class TestUsageDetection:
    @pytest.mark.parametrize("line, kind", [
        ("import { Base } from './base';", "import"),
        ("from models import Base", "import"),
        ("class Admin extends Base {", "inheritance"),
        ("class Admin(Base):", "inheritance"),
        ("const b = Base();", "call"),
        ("let x: Base;", "reference"),
    ])
    def test_classify_usage(self, line, kind):
        assert classify_usage(line, "Base") == kind

    def test_scan_skips_comments_and_keeps_context(self, impact_repo):
        usages = scan_file_for_usages(impact_repo / "services/api.ts", "services/api.ts", "validateUser")

        assert [u.line for u in usages] == [1, 4]
        assert [u.usage_type for u in usages] == ["import", "call"]
        assert usages[1].context.splitlines()[0].startswith("// validateUser")

    def test_word_boundary(self, impact_repo):
        assert scan_file_for_usages(impact_repo / "core/server.ts", "core/server.ts", "validate") == []


class TestImpactAnalyzer:
    @pytest.mark.asyncio
    async def test_core_server_ranked_first(self, impact_repo):
        result = await _analyzer(impact_repo).analyze_impact("validateUser", "utils/validate.ts")

        top = result.impacts[0]
        assert top.file_path == "core/server.ts"
        assert top.depth == 1
        assert top.impact_score == pytest.approx(160)
        assert top.impact_level == "CRITICAL"
        assert len(top.usages) == 8
        assert "Core module" in top.reason

    @pytest.mark.asyncio
    async def test_target_file_never_listed(self, impact_repo):
        result = await _analyzer(impact_repo).analyze_impact("validateUser", "utils/validate.ts")

        assert result.target_file == "utils/validate.ts"
        assert all(item.file_path != "utils/validate.ts" for item in result.impacts)
        assert all(item.file_path != "lib/unrelated.ts" for item in result.impacts)

    @pytest.mark.asyncio
    async def test_ranking_and_totals(self, impact_repo):
        result = await _analyzer(impact_repo).analyze_impact("validateUser", "utils/validate.ts")

        scores = [item.impact_score for item in result.impacts]
        assert scores == sorted(scores, reverse=True)
        assert result.total_impact == pytest.approx(round(sum(scores), 2))
        assert 1 <= result.graph_depth <= 3
        direct = {(i.file_path, i.usages[0].usage_type) for i in result.impacts if i.depth == 1}
        assert direct == {("core/server.ts", "call"), ("services/api.ts", "import"), ("services/api.ts", "call")}

    @pytest.mark.asyncio
    async def test_definition_found_by_parsing(self, impact_repo):
        result = await _analyzer(impact_repo).analyze_impact("validateUser")
        assert result.target_file == "utils/validate.ts"

    @pytest.mark.asyncio
    async def test_definition_from_knowledge_source(self, impact_repo):
        knowledge = StubKnowledgeSource({
            "definition of": [SearchResult(score=0.9, metadata={"file_path": str(impact_repo / "utils/validate.ts")})],
        })
        result = await _analyzer(impact_repo, knowledge).analyze_impact("validateUser")

        assert result.target_file == "utils/validate.ts"
        assert knowledge.queries[0] == "definition of validateUser"

    @pytest.mark.asyncio
    async def test_knowledge_dependents_added_at_depth_one(self, impact_repo):
        knowledge = StubKnowledgeSource({
            "call validateUser": [
                SearchResult(score=0.7, metadata={"caller": "login", "caller_file": "auth/login.ts"}),
                SearchResult(score=0.2, metadata={"caller": "incomplete"}),
            ],
        })
        result = await _analyzer(impact_repo, knowledge).analyze_impact("validateUser", "utils/validate.ts")

        login = [item for item in result.impacts if item.file_path == "auth/login.ts"]
        assert len(login) == 1
        assert login[0].symbol == "login"
        assert login[0].depth == 1
        assert login[0].usages[0].line == 0

    @pytest.mark.asyncio
    async def test_knowledge_failure_degrades_to_text_scan(self, impact_repo):
        knowledge = StubKnowledgeSource(fail=True)
        result = await _analyzer(impact_repo, knowledge).analyze_impact("validateUser")

        assert result.target_file == "utils/validate.ts"
        assert result.impacts[0].file_path == "core/server.ts"

    @pytest.mark.asyncio
    async def test_unknown_symbol_raises(self, impact_repo):
        with pytest.raises(NotFoundError, match="doesNotExist"):
            await _analyzer(impact_repo).analyze_impact("doesNotExist")

    @pytest.mark.asyncio
    async def test_unused_symbol_has_no_impacts(self, impact_repo):
        result = await _analyzer(impact_repo).analyze_impact("nothing", "lib/unrelated.ts")

        assert result.impacts == []
        assert result.total_impact == 0
        assert result.graph_depth == 0

    @pytest.mark.asyncio
    async def test_find_usages_scoped(self, impact_repo):
        usages = await _analyzer(impact_repo).find_usages("validateUser", scope="services")
        assert {u.file_path for u in usages} == {"services/api.ts"}

    @pytest.mark.asyncio
    async def test_relative_target_file_is_normalized(self, impact_repo):
        result = await _analyzer(impact_repo).analyze_impact("validateUser", "./utils/../utils/validate.ts")

        assert result.target_file == "utils/validate.ts"
        assert all(item.file_path != "utils/validate.ts" for item in result.impacts)

    @pytest.mark.asyncio
    async def test_malformed_knowledge_payload_does_not_abort(self, impact_repo, monkeypatch):
        class Response:
            def raise_for_status(self):
                pass

            def json(self):
                return {"documents": [
                    {"id": "bad", "score": "high", "metadata": {"file_path": "lib/unrelated.ts"}},
                    {"id": "odd", "score": 0.5, "metadata": ["not", "a", "mapping"]},
                ]}

        monkeypatch.setattr(knowledge_module.requests, "post", lambda *a, **k: Response())
        analyzer = _analyzer(impact_repo, HttpKnowledgeSource("http://kb.local"))
        result = await analyzer.analyze_impact("validateUser")

        assert result.target_file == "utils/validate.ts"
        assert result.impacts[0].file_path == "core/server.ts"


def _item(file_path, depth, level, score, usage_types=("call",), symbol="validateUser"):
    usages = [Usage(file_path=file_path, line=i + 1, context="", usage_type=t) for i, t in enumerate(usage_types)]
    return ImpactItem(symbol=symbol, file_path=file_path, impact_level=level, impact_score=score,
                      usages=usages, depth=depth, reason="")


def _result(*items):
    return ImpactAnalysisResult(target_symbol="validateUser", target_file="utils/validate.ts",
                                total_impact=sum(i.impact_score for i in items), impacts=list(items),
                                graph_depth=max((i.depth for i in items), default=0))


class TestRipple:
    def test_layers_grouped_by_depth_with_worst_severity(self):
        ripple = build_ripple(_result(
            _item("core/server.ts", 1, "CRITICAL", 160, ("call", "call", "import")),
            _item("services/api.ts", 1, "LOW", 15, ("import",)),
            _item("lib/deep.ts", 3, "LOW", 12.5, ("reference",)),
            _item("lib/mid.ts", 2, "MEDIUM", 40),
        ))

        assert [layer.depth for layer in ripple.layers] == [1, 2, 3]
        first = ripple.layers[0]
        assert first.severity == "critical"
        assert first.total_impact == pytest.approx(175)
        assert first.nodes[0].usage_types == ["calls", "imports"]
        assert first.nodes[0].usage_count == 3
        assert first.nodes[0].id == "ripple-1-core/server.ts-validateUser"
        assert ripple.layers[1].severity == "medium"
        assert ripple.layers[2].nodes[0].usage_types == ["references"]

        assert ripple.total_affected == 4
        assert (ripple.critical_count, ripple.high_count, ripple.medium_count, ripple.low_count) == (1, 0, 1, 2)

    def test_filters(self):
        result = _result(
            _item("core/server.ts", 1, "CRITICAL", 160),
            _item("core/server.test.ts", 1, "HIGH", 60),
            _item("lib/weak.ts", 2, "LOW", 5),
            _item("lib/far.ts", 4, "MEDIUM", 25),
        )

        default = build_ripple(result)
        assert [n.file_path for layer in default.layers for n in layer.nodes] == ["core/server.ts"]

        everything = build_ripple(result, max_depth=10, include_tests=True, minimum_impact_score=0)
        assert everything.total_affected == 4
        assert [layer.depth for layer in everything.layers] == [1, 2, 4]

    def test_rings_positioned_around_center(self):
        ripple = build_ripple(_result(
            _item("a/one.ts", 1, "HIGH", 50),
            _item("a/two.ts", 1, "HIGH", 50),
            _item("b/three.ts", 2, "MEDIUM", 25),
        ))

        one, two = ripple.layers[0].nodes
        assert one.radius == 100 and ripple.layers[1].nodes[0].radius == 180
        assert one.position.x == pytest.approx(400) and one.position.y == pytest.approx(300)
        assert two.position.x == pytest.approx(400) and two.position.y == pytest.approx(500)

    def test_empty_result(self):
        ripple = build_ripple(_result())

        assert ripple.layers == []
        assert ripple.total_affected == 0
        assert ripple.to_dict()["totalAffected"] == 0

    @pytest.mark.asyncio
    async def test_ripple_from_analysis(self, impact_repo):
        result = await _analyzer(impact_repo).analyze_impact("validateUser", "utils/validate.ts")
        ripple = build_ripple(result)

        assert ripple.layers[0].depth == 1
        assert ripple.layers[0].severity == "critical"
        assert ripple.critical_count >= 1

    @pytest.mark.parametrize("entity_id, expected", [
        ("validateUser", ("validateUser", None)),
        ("file:src/utils/validate.ts:validateUser", ("validateUser", "src/utils/validate.ts")),
        ("src/validate.ts:validateUser", ("validateUser", "src/validate.ts")),
        ("function:validateUser", ("validateUser", None)),
    ])
    def test_parse_entity_id(self, entity_id, expected):
        assert parse_entity_id(entity_id) == expected
