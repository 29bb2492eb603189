"""Metrics collection for theme analysis runs."""

import time
import logging
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
import statistics

logger = logging.getLogger(__name__)


@dataclass
class OracleCallMetrics:
    """Metrics for a single oracle call."""
    pass_name: str
    model: str
    start_time: float
    end_time: float
    prompt_chars: int
    response_chars: int
    error: Optional[str] = None

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self.end_time - self.start_time


@dataclass
class PassMetrics:
    """Aggregated metrics for one analysis pass (extract or refine)."""
    pass_name: str
    call_count: int = 0
    total_duration: float = 0.0
    total_prompt_chars: int = 0
    total_response_chars: int = 0
    error_count: int = 0
    response_times: List[float] = field(default_factory=list)

    @property
    def avg_response_time(self) -> float:
        return statistics.mean(self.response_times) if self.response_times else 0.0

    @property
    def p95_response_time(self) -> float:
        return _percentile(self.response_times, 0.95)

    @property
    def max_response_time(self) -> float:
        return max(self.response_times) if self.response_times else 0.0

    @property
    def success_rate(self) -> float:
        """Success rate as percentage."""
        if self.call_count == 0:
            return 100.0
        return ((self.call_count - self.error_count) / self.call_count) * 100


@dataclass
class TranscriptMappingMetrics:
    """Label mapping and filtering outcome for one transcript."""
    transcript_id: str
    labels_received: int
    labels_mapped: int
    labels_unmapped: int
    skipped_overused: int = 0
    backfilled: int = 0
    used_fallback: bool = False
    pass_count: int = 1


class MetricsCollector:
    """Collects and aggregates metrics for analysis runs."""

    def __init__(self):
        self.start_time = time.time()
        self.oracle_calls: List[OracleCallMetrics] = []
        self.pass_metrics: Dict[str, PassMetrics] = {}
        self.mappings: List[TranscriptMappingMetrics] = []

    def record_oracle_call(self, call_metrics: OracleCallMetrics):
        """Record metrics for a single oracle call."""
        self.oracle_calls.append(call_metrics)

        name = call_metrics.pass_name
        if name not in self.pass_metrics:
            self.pass_metrics[name] = PassMetrics(pass_name=name)

        pm = self.pass_metrics[name]
        pm.call_count += 1
        pm.total_duration += call_metrics.duration
        pm.total_prompt_chars += call_metrics.prompt_chars
        pm.total_response_chars += call_metrics.response_chars
        pm.response_times.append(call_metrics.duration)
        if call_metrics.error:
            pm.error_count += 1
            logger.debug(f"Oracle {name} call failed: {call_metrics.error}")

    def record_mapping(self, mapping_metrics: TranscriptMappingMetrics):
        """Record how one transcript's labels resolved."""
        self.mappings.append(mapping_metrics)

    @property
    def mapping_success_rate(self) -> float:
        """Share of received labels that resolved to a theme, as percentage."""
        received = sum(m.labels_received for m in self.mappings)
        if received == 0:
            return 100.0
        return sum(m.labels_mapped for m in self.mappings) / received * 100

    @property
    def fallback_rate(self) -> float:
        """Share of transcripts analyzed from the fallback record, as percentage."""
        if not self.mappings:
            return 0.0
        return sum(1 for m in self.mappings if m.used_fallback) / len(self.mappings) * 100

    def get_summary(self) -> Dict[str, Any]:
        """Get aggregated metrics for the entire run."""
        total_duration = time.time() - self.start_time
        total_calls = len(self.oracle_calls)
        total_errors = sum(pm.error_count for pm in self.pass_metrics.values())
        transcripts = len(self.mappings)

        return {
            "run_duration_seconds": total_duration,
            "run_duration_formatted": self._format_duration(total_duration),
            "total_oracle_calls": total_calls,
            "total_errors": total_errors,
            "overall_success_rate": ((total_calls - total_errors) / total_calls * 100) if total_calls > 0 else 100.0,
            "transcripts_analyzed": transcripts,
            "transcripts_per_minute": round(transcripts / total_duration * 60, 2) if total_duration > 0 else 0,
            "mapping_success_rate": round(self.mapping_success_rate, 1),
            "fallback_rate": round(self.fallback_rate, 1),
            "total_unmapped_labels": sum(m.labels_unmapped for m in self.mappings),
            "total_skipped_overused": sum(m.skipped_overused for m in self.mappings),
            "total_backfilled": sum(m.backfilled for m in self.mappings),
            "refined_transcripts": sum(1 for m in self.mappings if m.pass_count > 1),
            "pass_metrics": {
                name: self._pass_metrics_to_dict(pm)
                for name, pm in self.pass_metrics.items()
            },
        }

    def _pass_metrics_to_dict(self, pm: PassMetrics) -> Dict[str, Any]:
        return {
            "call_count": pm.call_count,
            "total_duration": pm.total_duration,
            "total_prompt_chars": pm.total_prompt_chars,
            "total_response_chars": pm.total_response_chars,
            "error_count": pm.error_count,
            "success_rate": pm.success_rate,
            "avg_response_time": round(pm.avg_response_time, 3),
            "p95_response_time": round(pm.p95_response_time, 3),
            "max_response_time": round(pm.max_response_time, 3),
        }

    def _format_duration(self, seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            minutes = int(seconds // 60)
            secs = int(seconds % 60)
            return f"{minutes}m {secs}s"
        else:
            hours = int(seconds // 3600)
            minutes = int((seconds % 3600) // 60)
            return f"{hours}h {minutes}m"


def _percentile(values: List[float], percentile: float) -> float:
    if not values:
        return 0.0
    sorted_values = sorted(values)
    index = int(len(sorted_values) * percentile)
    return sorted_values[min(index, len(sorted_values) - 1)]
