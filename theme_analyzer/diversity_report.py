"""Read-only report on how themes are spread across the analyzed corpus."""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from rich.console import Console
from rich.table import Table

from .models import AnalysisResult, Taxonomy
from .usage_statistics import UsageStatisticsAggregator

logger = logging.getLogger(__name__)


@dataclass
class ThemeUsageRow:
    theme_id: str
    name: str
    count: int
    percentage: float


@dataclass
class DiversityReport:
    total_analyses: int
    taxonomy_size: int
    unique_themes_used: int
    coverage_percentage: float
    average_themes_per_analysis: float
    fallback_count: int
    most_used: List[ThemeUsageRow] = field(default_factory=list)
    never_used: List[str] = field(default_factory=list)
    orphaned_ids: List[str] = field(default_factory=list)


def build_diversity_report(results: Sequence[AnalysisResult], taxonomy: Taxonomy,
                           top_n: int = 10) -> DiversityReport:
    """Summarize theme usage over persisted analyses."""
    snapshot = UsageStatisticsAggregator.aggregate(list(results))
    active = taxonomy.active()
    used_active = [t for t in active if snapshot.count(t.id) > 0]

    most_used = [
        ThemeUsageRow(s.theme_id, taxonomy.name_of(s.theme_id), s.count, round(s.percentage, 1))
        for s in snapshot.sorted_by_usage()[:top_n]
    ]
    total_themes = sum(len(r.mapped_theme_ids) for r in results)

    return DiversityReport(
        total_analyses=len(results),
        taxonomy_size=len(active),
        unique_themes_used=len(used_active),
        coverage_percentage=round(100.0 * len(used_active) / len(active), 1) if len(active) else 0.0,
        average_themes_per_analysis=round(total_themes / len(results), 2) if results else 0.0,
        fallback_count=sum(1 for r in results if r.requires_review),
        most_used=most_used,
        never_used=[t.name for t in active if snapshot.count(t.id) == 0],
        orphaned_ids=snapshot.orphaned_ids(active),
    )


def display_diversity_report(report: DiversityReport, console: Console) -> None:
    summary = Table(title="[bold]Theme Diversity[/bold]", show_header=False)
    summary.add_column("Metric", style="cyan")
    summary.add_column("Value", justify="right")
    summary.add_row("Analyses", f"{report.total_analyses:,}")
    summary.add_row("Active themes", f"{report.taxonomy_size:,}")
    summary.add_row("Themes used", f"{report.unique_themes_used:,}")
    summary.add_row("Coverage", f"{report.coverage_percentage:.1f}%")
    summary.add_row("Avg themes per analysis", f"{report.average_themes_per_analysis:.2f}")
    summary.add_row("Needing manual review", f"{report.fallback_count:,}")
    console.print(summary)

    if report.most_used:
        table = Table(title="[bold]Most Used Themes[/bold]")
        table.add_column("Theme", style="magenta")
        table.add_column("Uses", justify="right")
        table.add_column("Share", justify="right", style="green")
        for row in report.most_used:
            table.add_row(row.name, str(row.count), f"{row.percentage:.1f}%")
        console.print(table)

    if report.never_used:
        console.print(f"[yellow]Never used ({len(report.never_used)}):[/yellow] {', '.join(report.never_used[:20])}")
    if report.orphaned_ids:
        console.print(f"[red]Referenced ids missing from taxonomy:[/red] {', '.join(report.orphaned_ids)}")
