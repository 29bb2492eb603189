#!/usr/bin/env python3
"""Main CLI for the Storyteller Theme Analyzer."""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional, Tuple

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from theme_analyzer.analyzers import AnalysisOracleClient, AnthropicOracle
from theme_analyzer.batch_runner import BatchAnalysisRunner, BatchSummary
from theme_analyzer.config import AnalyzerConfig
from theme_analyzer.cost_estimator import CostEstimator
from theme_analyzer.diversity_report import build_diversity_report, display_diversity_report
from theme_analyzer.mapping import DiversityFilter, LabelMapper
from theme_analyzer.metrics_collector import MetricsCollector
from theme_analyzer.models import Taxonomy
from theme_analyzer.pipeline import ThemeAnalysisPipeline
from theme_analyzer.processing_tracker import ProcessingTracker
from theme_analyzer.prompt_composer import PromptComposer
from theme_analyzer.result_persister import ResultPersister
from theme_analyzer.storage import JsonFileThemeStore, StorageError, ThemeStore
from theme_analyzer.usage_statistics import UsageStatisticsAggregator

# Load environment variables
load_dotenv()

# Set up rich console for pretty output
console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=console, rich_tracebacks=True)]
)
logger = logging.getLogger(__name__)

STATE_FILE = "processing_state.json"


def build_composer(config: AnalyzerConfig) -> PromptComposer:
    return PromptComposer(
        policy=config.policy,
        max_transcript_chars=config.transcript_max_chars,
        avoid_limit=config.avoid_limit,
        prefer_limit=config.prefer_limit,
    )


def build_pipeline(store: ThemeStore, api_key: str, config: AnalyzerConfig,
                   metrics: Optional[MetricsCollector] = None) -> ThemeAnalysisPipeline:
    """Wire the pipeline components from configuration."""
    composer = build_composer(config)
    oracle_client = AnalysisOracleClient(
        AnthropicOracle(api_key=api_key, model=config.model),
        composer=composer,
        timeout_seconds=config.oracle_timeout_seconds,
        extract_max_tokens=config.extract_max_tokens,
        extract_temperature=config.extract_temperature,
        refine_max_tokens=config.refine_max_tokens,
        refine_temperature=config.refine_temperature,
        metrics=metrics,
    )
    return ThemeAnalysisPipeline(
        store=store,
        oracle_client=oracle_client,
        composer=composer,
        mapper=LabelMapper(),
        diversity_filter=DiversityFilter(config.policy, min_themes=config.min_themes, seed=config.backfill_seed),
        persister=ResultPersister(store, config.approval_confidence, config.analysis_version),
        aggregator=UsageStatisticsAggregator(store, cache_ttl_seconds=config.usage_cache_ttl_seconds),
        refinement_enabled=config.refinement_enabled,
        metrics=metrics,
    )


@click.command()
@click.option(
    '--data-dir', '-d',
    type=click.Path(exists=True, file_okay=False, dir_okay=True),
    default='./data',
    help='Directory holding themes.json, transcripts.jsonl and analysis_results.json'
)
@click.option(
    '--config', '-C',
    type=click.Path(exists=True, file_okay=True, dir_okay=False),
    help='Path to configuration file (YAML)'
)
@click.option(
    '--api-key',
    envvar='ANTHROPIC_API_KEY',
    help='Anthropic API key (can also use ANTHROPIC_API_KEY env var)'
)
@click.option(
    '--all', '-a', 'process_all',
    is_flag=True,
    help='Re-analyze all transcripts, including previously analyzed ones'
)
@click.option(
    '--retry-failed',
    is_flag=True,
    help='Re-analyze transcripts whose previous analysis failed'
)
@click.option(
    '--transcript-id', '-t', 'transcript_ids',
    multiple=True,
    help='Analyze only this transcript (repeatable)'
)
@click.option(
    '--limit', '-n',
    type=click.IntRange(min=1),
    help='Analyze at most this many transcripts'
)
@click.option(
    '--no-refine',
    is_flag=True,
    help='Skip the second refinement pass'
)
@click.option(
    '--estimate-cost',
    is_flag=True,
    help='Estimate API costs without running analysis'
)
@click.option(
    '--report',
    is_flag=True,
    help='Show the theme diversity report without running analysis'
)
def main(
    data_dir: str,
    config: Optional[str],
    api_key: Optional[str],
    process_all: bool,
    retry_failed: bool,
    transcript_ids: Tuple[str, ...],
    limit: Optional[int],
    no_refine: bool,
    estimate_cost: bool,
    report: bool
):
    """Analyze storyteller transcripts and map their themes onto the taxonomy."""

    # Set log level from environment variable if provided
    log_level = os.getenv('LOG_LEVEL', 'INFO').upper()
    if log_level in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
        logging.getLogger().setLevel(getattr(logging, log_level))

    if config:
        console.print(f"[blue]Loading configuration from {config}...[/blue]")
    try:
        analyzer_config = AnalyzerConfig.load(Path(config) if config else None)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--config')
    if no_refine:
        analyzer_config.refinement_enabled = False

    # API key is not needed for estimates or reports
    if not (estimate_cost or report) and not api_key:
        console.print("[red]Error: Anthropic API key not found![/red]")
        console.print("Please set ANTHROPIC_API_KEY environment variable or use --api-key option")
        raise SystemExit(1)

    console.print("[bold green]Storyteller Theme Analyzer[/bold green]")

    try:
        store = JsonFileThemeStore(Path(data_dir))
        if report:
            show_report(store)
            return
        asyncio.run(analyze_transcripts(
            store=store,
            data_dir=Path(data_dir),
            api_key=api_key,
            config=analyzer_config,
            process_all=process_all,
            retry_failed=retry_failed,
            transcript_ids=transcript_ids,
            limit=limit,
            estimate_only=estimate_cost,
        ))
    except StorageError as e:
        console.print(f"[red]Storage error: {e}[/red]")
        raise SystemExit(1)


def show_report(store: ThemeStore):
    taxonomy = Taxonomy(store.get_active_themes())
    diversity = build_diversity_report(store.get_all_analysis_results(), taxonomy)
    display_diversity_report(diversity, console)


async def analyze_transcripts(
    store: ThemeStore,
    data_dir: Path,
    api_key: Optional[str],
    config: AnalyzerConfig,
    process_all: bool = False,
    retry_failed: bool = False,
    transcript_ids: Tuple[str, ...] = (),
    limit: Optional[int] = None,
    estimate_only: bool = False
) -> Optional[BatchSummary]:
    """Main analysis workflow."""
    tracker = ProcessingTracker(data_dir / STATE_FILE)

    stats = tracker.get_statistics()
    if stats['total_transcripts'] > 0:
        console.print(f"[blue]Previously seen: {stats['total_transcripts']} transcripts[/blue]")
        console.print(f"[blue]Analyzed: {stats['processed']}, failed: {stats['failed']}[/blue]")
        if stats['last_processed']:
            console.print(f"[blue]Last run: {stats['last_processed']}[/blue]")

    transcripts = store.list_transcripts()
    console.print(f"[green]Found {len(transcripts)} transcripts[/green]")

    metrics = MetricsCollector()
    pipeline = build_pipeline(store, api_key or "", config, metrics=metrics)
    runner = BatchAnalysisRunner(
        pipeline,
        tracker=tracker,
        batch_size=config.batch_size,
        rate_limit_seconds=config.rate_limit_seconds,
        max_retries=config.max_retries,
        backoff_base_seconds=config.backoff_base_seconds,
        backoff_multiplier=config.backoff_multiplier,
    )

    if estimate_only:
        console.print("\n[bold blue]Estimating API Costs...[/bold blue]")
        selected = runner.select_transcripts(transcripts, process_all, retry_failed, transcript_ids, limit)
        taxonomy = Taxonomy(store.get_active_themes())
        usage = pipeline.aggregator.snapshot()
        estimator = CostEstimator(
            model=config.model,
            composer=pipeline.composer,
            refinement_enabled=config.refinement_enabled,
            rate_limit_seconds=config.rate_limit_seconds,
            batch_size=config.batch_size,
        )
        estimates = estimator.estimate(selected, taxonomy, usage)
        estimator.display_cost_estimate(estimates, show_details=True)

        estimate_file = data_dir / "cost_estimate.json"
        with open(estimate_file, 'w') as f:
            json.dump(estimates, f, indent=2)
        console.print(f"\n[green]Cost estimate saved to: {estimate_file}[/green]")
        console.print("\n[yellow]To proceed with analysis, run without --estimate-cost flag[/yellow]")
        return None

    console.print("\n[bold blue]Analyzing transcripts...[/bold blue]")
    summary = await runner.run(
        transcripts,
        force_all=process_all,
        retry_failed=retry_failed,
        transcript_ids=transcript_ids,
        limit=limit,
    )

    console.print("\n[bold green]Analysis Complete![/bold green]")
    console.print(f"  • Analyzed: [green]{len(summary.processed)}[/green]")
    console.print(f"  • Failed: [red]{len(summary.failed)}[/red]")
    console.print(f"  • Skipped: {summary.skipped}")
    for transcript_id, error in list(summary.failed.items())[:10]:
        console.print(f"    [red]{transcript_id}[/red]: {error}")

    display_metrics(metrics)
    show_report(store)
    return summary


def display_metrics(metrics: MetricsCollector):
    data = metrics.get_summary()
    table = Table(title="[bold]Run Metrics[/bold]")
    table.add_column("Pass", style="cyan")
    table.add_column("Calls", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Avg (s)", justify="right")
    table.add_column("P95 (s)", justify="right")
    for name, pm in data['pass_metrics'].items():
        table.add_row(name, str(pm['call_count']), str(pm['error_count']),
                      f"{pm['avg_response_time']:.2f}", f"{pm['p95_response_time']:.2f}")
    console.print(table)
    console.print(f"Mapping success rate: [green]{data['mapping_success_rate']:.1f}%[/green]  "
                  f"Fallback rate: [yellow]{data['fallback_rate']:.1f}%[/yellow]  "
                  f"Duration: {data['run_duration_formatted']}")


if __name__ == '__main__':
    main()
