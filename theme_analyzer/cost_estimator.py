"""Cost estimation for a batch of theme analyses."""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import tiktoken
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .models import Taxonomy, Transcript
from .prompt_composer import PromptComposer
from .usage_statistics import UsageSnapshot

logger = logging.getLogger(__name__)
console = Console()


@dataclass
class ModelPricing:
    """Pricing for a specific Claude model."""
    name: str
    input_cost_per_million: float  # USD per million tokens
    output_cost_per_million: float  # USD per million tokens
    context_window: int


CLAUDE_PRICING = {
    "claude-sonnet-4-20250514": ModelPricing(
        name="Claude Sonnet 4",
        input_cost_per_million=3.00,
        output_cost_per_million=15.00,
        context_window=200000
    ),
    "claude-3-5-sonnet-latest": ModelPricing(
        name="Claude 3.5 Sonnet",
        input_cost_per_million=3.00,
        output_cost_per_million=15.00,
        context_window=200000
    ),
    "claude-3-5-haiku-latest": ModelPricing(
        name="Claude 3.5 Haiku",
        input_cost_per_million=0.80,
        output_cost_per_million=4.00,
        context_window=200000
    ),
    "claude-opus-4-20250514": ModelPricing(
        name="Claude Opus 4",
        input_cost_per_million=15.00,
        output_cost_per_million=75.00,
        context_window=200000
    ),
}
DEFAULT_PRICING_KEY = "claude-sonnet-4-20250514"

# Typical response size; the JSON schema asks for a few short lists
EXPECTED_OUTPUT_TOKENS = 700
# Refinement wraps the prior result and the original request
REFINE_OVERHEAD_TOKENS = 250
SECONDS_PER_ORACLE_CALL = 12.0


class CostEstimator:
    """Estimates oracle tokens, cost and duration before a batch runs."""

    def __init__(self,
                 model: str = DEFAULT_PRICING_KEY,
                 composer: Optional[PromptComposer] = None,
                 refinement_enabled: bool = True,
                 rate_limit_seconds: float = 2.0,
                 batch_size: int = 1):
        self.model = model
        self.composer = composer or PromptComposer()
        self.refinement_enabled = refinement_enabled
        self.rate_limit_seconds = rate_limit_seconds
        self.batch_size = max(1, batch_size)

        # cl100k_base approximates Claude's tokenizer
        try:
            self.encoder = tiktoken.get_encoding("cl100k_base")
        except Exception:
            logger.warning("tiktoken encoding not available, using character-based estimation")
            self.encoder = None

    @property
    def pricing(self) -> ModelPricing:
        return CLAUDE_PRICING.get(self.model, CLAUDE_PRICING[DEFAULT_PRICING_KEY])

    def count_tokens(self, text: str) -> int:
        """Estimate token count for text."""
        if self.encoder:
            return len(self.encoder.encode(text))
        # Rough approximation: 1 token is about 4 characters
        return len(text) // 4

    def calculate_cost(self, input_tokens: int, output_tokens: int, pricing: ModelPricing) -> float:
        """Calculate cost in USD for given token counts."""
        input_cost = (input_tokens / 1_000_000) * pricing.input_cost_per_million
        output_cost = (output_tokens / 1_000_000) * pricing.output_cost_per_million
        return input_cost + output_cost

    def estimate(self, transcripts: Sequence[Transcript], taxonomy: Taxonomy,
                 usage: UsageSnapshot) -> Dict[str, Dict]:
        """Estimate costs for each pass over the given transcripts.

        Returns:
            Dictionary with per-pass estimates and a 'total' entry
        """
        pricing = self.pricing
        count = len(transcripts)
        extract_input = sum(
            self.count_tokens(self.composer.compose_for_transcript(t, taxonomy, usage))
            for t in transcripts
        )
        extract_output = count * EXPECTED_OUTPUT_TOKENS

        estimates = {
            'extract': {
                'model': pricing.name,
                'transcripts': count,
                'input_tokens': extract_input,
                'output_tokens': extract_output,
                'cost_usd': self.calculate_cost(extract_input, extract_output, pricing),
                'description': 'First-pass theme extraction'
            }
        }

        if self.refinement_enabled:
            refine_input = extract_input + count * (EXPECTED_OUTPUT_TOKENS + REFINE_OVERHEAD_TOKENS)
            refine_output = count * EXPECTED_OUTPUT_TOKENS
            estimates['refine'] = {
                'model': pricing.name,
                'transcripts': count,
                'input_tokens': refine_input,
                'output_tokens': refine_output,
                'cost_usd': self.calculate_cost(refine_input, refine_output, pricing),
                'description': 'Second-pass diversity refinement'
            }

        passes = 2 if self.refinement_enabled else 1
        batches = (count + self.batch_size - 1) // self.batch_size
        duration = batches * passes * SECONDS_PER_ORACLE_CALL + max(0, batches - 1) * self.rate_limit_seconds

        total_input = sum(p['input_tokens'] for p in estimates.values())
        total_output = sum(p['output_tokens'] for p in estimates.values())
        estimates['total'] = {
            'input_tokens': total_input,
            'output_tokens': total_output,
            'total_tokens': total_input + total_output,
            'cost_usd': sum(p['cost_usd'] for p in estimates.values()),
            'transcripts_analyzed': count,
            'characters_processed': sum(t.char_count for t in transcripts),
            'estimated_duration_seconds': duration,
        }
        return estimates

    def display_cost_estimate(self, estimates: Dict[str, Dict], show_details: bool = True) -> None:
        """Display cost estimates in a formatted table."""
        total = estimates['total']
        minutes = total['estimated_duration_seconds'] / 60
        summary = Panel(
            f"[bold]Estimated Total Cost: [green]${total['cost_usd']:.2f}[/green][/bold]\n"
            f"Transcripts: {total['transcripts_analyzed']:,}\n"
            f"Characters: {total['characters_processed']:,}\n"
            f"Total Tokens: {total['total_tokens']:,}\n"
            f"Estimated Duration: {minutes:.1f} minutes",
            title="[bold blue]Cost Estimate Summary[/bold blue]",
            border_style="blue"
        )
        console.print(summary)

        if not show_details:
            return

        table = Table(title="\n[bold]Detailed Cost Breakdown by Pass[/bold]")
        table.add_column("Pass", style="cyan", no_wrap=True)
        table.add_column("Model", style="magenta")
        table.add_column("Transcripts", justify="right")
        table.add_column("Input Tokens", justify="right")
        table.add_column("Output Tokens", justify="right")
        table.add_column("Cost (USD)", justify="right", style="green")

        for pass_name, data in estimates.items():
            if pass_name == 'total':
                continue
            table.add_row(
                pass_name.title(),
                data['model'],
                str(data['transcripts']),
                f"{data['input_tokens']:,}",
                f"{data['output_tokens']:,}",
                f"${data['cost_usd']:.3f}"
            )

        table.add_row(
            "[bold]TOTAL[/bold]",
            "-",
            str(total['transcripts_analyzed']),
            f"[bold]{total['input_tokens']:,}[/bold]",
            f"[bold]{total['output_tokens']:,}[/bold]",
            f"[bold green]${total['cost_usd']:.2f}[/bold green]",
            style="bold"
        )
        console.print(table)

        console.print("\n[dim]Notes:[/dim]")
        console.print("[dim]• Input tokens are counted over the actual composed extraction prompts[/dim]")
        console.print("[dim]• Output tokens assume a typical response size per pass[/dim]")
        console.print("[dim]• Token counts are estimates using tiktoken (cl100k_base encoding)[/dim]")
