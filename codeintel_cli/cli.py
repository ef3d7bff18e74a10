"""Typer-based CLI for CodeIntel dependency, impact and architecture analysis."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__, config, config_manager
from .advisor import ArchitectureAdvisor
from .dependency_graph import DependencyGraphAssembler, create_default_options
from .errors import CodeIntelError
from .graph_engine import GraphAnalyzer
from .graph_export import export_dot, export_html, export_json
from .impact import ImpactAnalyzer, build_ripple
from .knowledge import default_knowledge_source
from .llm import RefactoringEnhancer
from .models import (
    EDGE_TYPES,
    LAYOUT_TYPES,
    NODE_TYPES,
    ArchitectureAnalysisOptions,
    DependencyGraphOptions,
    Graph,
    ImpactRipple,
)
from .parser import TreeSitterSourceParser

console = Console()

app = typer.Typer(
    help="🧭 CodeIntel CLI — dependency graphs, change impact and architecture health.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

_state = {"repo": Path.cwd()}

PROVIDERS = ("ollama", "openai", "anthropic")
ISSUE_TYPES = (
    "circular-dependency", "god-class", "tight-coupling",
    "dead-code", "feature-envy", "missing-abstraction",
)

_LEVEL_COLORS = {"CRITICAL": "bold red", "HIGH": "red", "MEDIUM": "yellow", "LOW": "green"}
_SEVERITY_COLORS = {"critical": "bold red", "error": "red", "warning": "yellow", "info": "cyan"}


def version_callback(value: bool):
    if value:
        typer.echo(f"CodeIntel CLI v{__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Repository root to analyze."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", help="Show version and exit.", callback=version_callback, is_eager=True,
    ),
):
    """CodeIntel: code-intelligence analysis over an in-memory dependency graph."""
    _configure_logging(verbose)
    if not repo.is_dir():
        raise typer.BadParameter(f"Repository path '{repo}' is not a directory.", param_hint="--repo")
    _state["repo"] = repo.resolve()


def _repo() -> Path:
    return _state["repo"]


def _fail(exc: Exception) -> None:
    console.print(f"[red]✗[/red] {exc}")
    raise typer.Exit(code=1)


def _validate_choices(values: List[str], allowed, option: str) -> None:
    unknown = [v for v in values if v not in allowed]
    if unknown:
        raise typer.BadParameter(f"Unknown value(s) {', '.join(unknown)}. Choose from: {', '.join(allowed)}",
                                 param_hint=option)


def _build_graph(options: DependencyGraphOptions) -> Graph:
    assembler = DependencyGraphAssembler(TreeSitterSourceParser(), default_knowledge_source(), _repo())
    try:
        return asyncio.run(assembler.build_graph(options))
    except CodeIntelError as exc:
        _fail(exc)


def _graph_options(
    root: str,
    layout: str = "force",
    node_types: Optional[List[str]] = None,
    edge_types: Optional[List[str]] = None,
    include_external: bool = False,
    depth: int = 5,
) -> DependencyGraphOptions:
    if layout not in LAYOUT_TYPES:
        raise typer.BadParameter(f"Choose from: {', '.join(LAYOUT_TYPES)}", param_hint="--layout")
    options = create_default_options(root)
    options.layout = layout
    options.depth = depth
    options.include_external = include_external
    if node_types:
        _validate_choices(node_types, NODE_TYPES, "--node-type")
        options.filters.node_types = list(node_types)
    if edge_types:
        _validate_choices(edge_types, EDGE_TYPES, "--edge-type")
        options.filters.edge_types = list(edge_types)
    return options


# ===================================================================
# Graph commands
# ===================================================================

@app.command("graph")
def graph_command(
    root: str = typer.Argument(".", help="File or directory to graph (relative to --repo)."),
    layout: str = typer.Option("force", "--layout", "-l", help="force, hierarchical, radial or organic."),
    node_type: Optional[List[str]] = typer.Option(None, "--node-type", "-n", help="Node types to keep (repeatable)."),
    edge_type: Optional[List[str]] = typer.Option(None, "--edge-type", "-e", help="Edge types to keep (repeatable)."),
    include_external: bool = typer.Option(False, "--include-external", help="Resolve bare imports inside the repo."),
    depth: int = typer.Option(5, "--depth", "-d", help="Traversal depth hint."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the graph as JSON."),
):
    """Build a dependency graph and summarize it."""
    graph = _build_graph(_graph_options(root, layout, node_type, edge_type, include_external, depth))
    meta = graph.metadata

    console.print(Panel.fit(
        f"[bold]{meta.total_nodes}[/bold] nodes · [bold]{meta.total_edges}[/bold] edges · "
        f"containment depth {meta.max_depth}\n"
        f"files: {meta.files_discovered} discovered, {meta.files_parsed} parsed, {meta.files_skipped} skipped · "
        f"enrichment: {'applied' if meta.enrichment_applied else 'unavailable'}",
        title=f"📊 Dependency graph: {root}",
        border_style="cyan",
    ))

    table = Table(show_header=True)
    table.add_column("Kind", style="cyan")
    table.add_column("Type")
    table.add_column("Count", justify="right")
    for node_kind, count in sorted(Counter(n.type for n in graph.nodes).items()):
        table.add_row("node", node_kind, str(count))
    for edge_kind, count in sorted(Counter(e.type for e in graph.edges).items()):
        table.add_row("edge", edge_kind, str(count))
    console.print(table)

    if output:
        export_json(graph, output)
        console.print(f"[green]✓[/green] Graph written to {output}")


@app.command("stats")
def stats_command(
    root: str = typer.Argument(".", help="File or directory to analyze."),
    top: int = typer.Option(10, "--top", help="How many nodes to rank."),
):
    """Graph statistics with importance and centrality rankings."""
    graph = _build_graph(_graph_options(root))
    analyzer = GraphAnalyzer(graph)
    stats = analyzer.get_statistics()

    table = Table(title="Graph statistics", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in stats.items():
        shown = f"{value:.4f}" if isinstance(value, float) else str(value)
        table.add_row(key.replace("_", " "), shown)
    console.print(table)

    importance = analyzer.calculate_importance_scores()
    centrality = analyzer.calculate_betweenness_centrality()
    nodes = graph.node_map()

    ranking = Table(title=f"Top {top} nodes by importance", show_header=True)
    ranking.add_column("Node", style="cyan")
    ranking.add_column("Type")
    ranking.add_column("Importance", justify="right")
    ranking.add_column("Betweenness", justify="right")
    for node_id, score in sorted(importance.items(), key=lambda kv: kv[1], reverse=True)[:top]:
        ranking.add_row(nodes[node_id].path if nodes[node_id].type == "file" else nodes[node_id].name,
                        nodes[node_id].type, f"{score:.4f}", f"{centrality.get(node_id, 0):.3f}")
    console.print(ranking)


@app.command("cycles")
def cycles_command(root: str = typer.Argument(".", help="File or directory to analyze.")):
    """List circular dependencies and strongly connected components."""
    graph = _build_graph(_graph_options(root))
    analyzer = GraphAnalyzer(graph)
    cycles = analyzer.find_circular_dependencies()
    components = analyzer.find_strongly_connected_components()

    if not cycles:
        console.print("[green]✓[/green] No circular dependencies found.")
    for index, cycle in enumerate(cycles, 1):
        console.print(f"[yellow]{index}.[/yellow] " + " → ".join(cycle + cycle[:1]))

    if components:
        console.print(f"\n[bold]Strongly connected components ({len(components)})[/bold]")
        for component in components:
            console.print(f"  • {len(component)} nodes: {', '.join(sorted(component))}")


@app.command("export")
def export_command(
    root: str = typer.Argument(..., help="File or directory to graph."),
    output: Path = typer.Argument(..., help="Output file."),
    format: str = typer.Option("json", "--format", "-f", help="json, dot or html."),
    focus: str = typer.Option("", "--focus", help="Keep nodes matching this text and their neighbours."),
    layout: str = typer.Option("force", "--layout", "-l", help="Layout used for node positions."),
):
    """Export a dependency graph to JSON, DOT or interactive HTML."""
    exporters = {"json": export_json, "dot": export_dot, "html": export_html}
    if format not in exporters:
        raise typer.BadParameter("Choose from: json, dot, html", param_hint="--format")
    graph = _build_graph(_graph_options(root, layout))
    exporters[format](graph, output, focus)
    console.print(f"[green]✓[/green] Exported {format.upper()} to {output}")


# ===================================================================
# Analysis commands
# ===================================================================

@app.command("impact")
def impact_command(
    symbol: str = typer.Argument(..., help="Function or class name to change."),
    file: Optional[str] = typer.Option(None, "--file", "-f", help="File defining the symbol."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON."),
    ripple: bool = typer.Option(False, "--ripple", help="Group dependents into rings by depth."),
    max_depth: int = typer.Option(3, "--max-depth", help="Deepest ring shown with --ripple."),
    include_tests: bool = typer.Option(False, "--include-tests", help="Keep test files in the ripple."),
    min_score: float = typer.Option(10, "--min-score", help="Drop ripple entries scoring below this."),
):
    """Blast radius of changing SYMBOL."""
    analyzer = ImpactAnalyzer(TreeSitterSourceParser(), default_knowledge_source(), _repo())
    try:
        result = asyncio.run(analyzer.analyze_impact(symbol, file))
    except CodeIntelError as exc:
        _fail(exc)

    if ripple:
        _show_ripple(build_ripple(result, max_depth=max_depth, include_tests=include_tests,
                                  minimum_impact_score=min_score), as_json)
        return

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return

    console.print(
        f"\n[bold cyan]💥 Impact of changing `{symbol}`[/bold cyan] ({result.target_file}) · "
        f"total {result.total_impact:.2f} · depth {result.graph_depth}\n"
    )
    if not result.impacts:
        console.print("[green]✓[/green] No dependents found.")
        return

    table = Table(show_header=True)
    table.add_column("Level", width=9)
    table.add_column("Score", justify="right")
    table.add_column("Depth", justify="right")
    table.add_column("File", style="cyan")
    table.add_column("Reason", min_width=30)
    for item in result.impacts:
        color = _LEVEL_COLORS.get(item.impact_level, "white")
        table.add_row(f"[{color}]{item.impact_level}[/{color}]", f"{item.impact_score:.2f}",
                      str(item.depth), item.file_path, item.reason)
    console.print(table)


def _show_ripple(ripple: ImpactRipple, as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(ripple.to_dict(), indent=2))
        return

    console.print(
        f"\n[bold cyan]🌊 Impact ripple of `{ripple.symbol}`[/bold cyan] ({ripple.file_path}) · "
        f"{ripple.total_affected} affected · "
        f"[bold red]{ripple.critical_count} critical[/bold red] · [red]{ripple.high_count} high[/red] · "
        f"[yellow]{ripple.medium_count} medium[/yellow] · [green]{ripple.low_count} low[/green]\n"
    )
    if not ripple.layers:
        console.print("[green]✓[/green] No dependents above the threshold.")
        return

    table = Table(show_header=True)
    table.add_column("Ring", justify="right")
    table.add_column("Severity", width=9)
    table.add_column("Total", justify="right")
    table.add_column("Files", style="cyan")
    for layer in ripple.layers:
        color = _LEVEL_COLORS.get(layer.severity.upper(), "white")
        table.add_row(str(layer.depth), f"[{color}]{layer.severity}[/{color}]", f"{layer.total_impact:.2f}",
                      ", ".join(dict.fromkeys(node.file_path for node in layer.nodes)))
    console.print(table)


@app.command("architecture")
def architecture_command(
    path: Optional[str] = typer.Argument(None, help="Subtree to analyze (default: whole repo)."),
    issue: Optional[List[str]] = typer.Option(None, "--issue", "-i", help="Issue types to detect (repeatable)."),
    min_confidence: float = typer.Option(0.5, "--min-confidence", help="Drop suggestions below this confidence."),
    enhance: bool = typer.Option(False, "--enhance", help="Rewrite top refactoring hints with the configured LLM."),
):
    """Detect architecture smells and score overall health."""
    options = ArchitectureAnalysisOptions(
        target_path=path,
        min_confidence=min_confidence,
        include_refactoring_suggestions=enhance,
    )
    if issue:
        _validate_choices(issue, ISSUE_TYPES, "--issue")
        options.issue_types = list(issue)

    advisor = ArchitectureAdvisor(
        TreeSitterSourceParser(),
        default_knowledge_source(),
        _repo(),
        advisory=RefactoringEnhancer() if enhance else None,
    )
    try:
        result = asyncio.run(advisor.analyze(options))
    except CodeIntelError as exc:
        _fail(exc)

    color = "green" if result.health_score >= 80 else "yellow" if result.health_score >= 60 else "red"
    console.print(Panel.fit(
        f"[{color}]{result.health_score}/100[/{color}]\n{result.summary}",
        title="🏛  Architecture health",
        border_style=color,
    ))

    for suggestion in result.suggestions:
        sev_color = _SEVERITY_COLORS.get(suggestion.severity, "white")
        console.print(
            f"[{sev_color}]{suggestion.severity.upper():8}[/{sev_color}] "
            f"[bold]{suggestion.type}[/bold] ({suggestion.confidence:.2f}) {suggestion.description}"
        )
        if enhance:
            console.print(f"[dim]{suggestion.suggested_refactoring}[/dim]\n")

    stats = result.statistics
    console.print(
        f"\n{stats.total_issues} issues · {stats.critical_count} high-severity · "
        f"{stats.warning_count} warnings · {stats.info_count} info"
    )


# ===================================================================
# Configuration commands
# ===================================================================

@app.command("set-llm")
def set_llm(
    provider: str = typer.Argument(..., help="LLM provider: ollama, openai, anthropic"),
    model: str = typer.Option(None, "--model", "-m", help="Model name (uses provider default if not set)."),
    api_key: str = typer.Option(None, "--api-key", "-k", help="API key for cloud providers."),
    endpoint: str = typer.Option(None, "--endpoint", "-e", help="Custom endpoint URL."),
):
    """Choose the LLM used by `architecture --enhance`."""
    provider = provider.lower().strip()
    if provider not in PROVIDERS:
        console.print(f"[red]✗[/red] Unknown provider '{provider}'. Choose from: {', '.join(PROVIDERS)}")
        raise typer.Exit(code=1)

    defaults = config_manager.get_provider_config(provider)
    resolved_endpoint = endpoint or (defaults.get("endpoint", "") if provider == "ollama" else "")
    if provider != "ollama" and not api_key:
        console.print(f"[red]✗[/red] Provider '{provider}' needs --api-key.")
        raise typer.Exit(code=1)

    if not config_manager.save_config(provider, model or defaults["model"], api_key or "", resolved_endpoint):
        console.print(f"[red]✗[/red] Could not write {config_manager.CONFIG_FILE}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] LLM provider set to [bold]{provider}[/bold] ({model or defaults['model']})")


@app.command("show-llm")
def show_llm():
    """Show the current LLM provider configuration."""
    cfg = config_manager.load_config()
    api_key = cfg.get("api_key", "")
    table = Table(title="LLM configuration", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Provider", cfg.get("provider", "ollama"))
    table.add_row("Model", cfg.get("model", ""))
    table.add_row("Endpoint", cfg.get("endpoint", "") or "(default)")
    table.add_row("API key", api_key[:8] + "•" * min(max(len(api_key) - 8, 0), 16) if api_key else "(not set)")
    table.add_row("Config", str(config_manager.CONFIG_FILE))
    console.print(table)


@app.command("set-knowledge")
def set_knowledge(
    endpoint: str = typer.Argument(..., help="Base URL of the knowledge service."),
    api_key: str = typer.Option(None, "--api-key", "-k", help="Bearer token for the service."),
):
    """Configure the knowledge source used for enrichment."""
    if not config_manager.save_knowledge_config(endpoint, api_key or ""):
        console.print(f"[red]✗[/red] Could not write {config_manager.CONFIG_FILE}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Knowledge source set to {endpoint}")


if __name__ == "__main__":
    app()
