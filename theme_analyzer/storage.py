"""Storage collaborators: the record store holding themes, transcripts and analyses."""

import contextlib
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

import jsonlines

from .models import AnalysisResult, CanonicalTheme, Transcript

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the record store cannot be read or written."""


class TranscriptNotFound(StorageError):
    """Raised when a transcript id is not in the store."""


class ThemeStore(ABC):
    """Record store interface consumed by the analysis pipeline."""

    @abstractmethod
    def get_active_themes(self) -> List[CanonicalTheme]:
        """Active taxonomy entries, in taxonomy order."""

    @abstractmethod
    def get_all_analysis_results(self) -> List[AnalysisResult]:
        """Every persisted analysis (used for usage aggregation)."""

    @abstractmethod
    def get_transcript(self, transcript_id: str) -> Transcript:
        """Load one transcript or raise TranscriptNotFound."""

    @abstractmethod
    def list_transcripts(self) -> List[Transcript]:
        """All transcripts available for analysis."""

    @abstractmethod
    def upsert_analysis_result(self, transcript_id: str, result: AnalysisResult) -> None:
        """Replace any prior analysis for the transcript with this one."""

    def get_analysis_result(self, transcript_id: str) -> Optional[AnalysisResult]:
        for result in self.get_all_analysis_results():
            if result.transcript_id == transcript_id:
                return result
        return None


class InMemoryThemeStore(ThemeStore):
    """Dict-backed store for tests and embedding callers."""

    def __init__(self,
                 themes: Optional[List[CanonicalTheme]] = None,
                 transcripts: Optional[List[Transcript]] = None,
                 results: Optional[List[AnalysisResult]] = None):
        self.themes: List[CanonicalTheme] = list(themes or [])
        self.transcripts: Dict[str, Transcript] = {t.id: t for t in transcripts or []}
        self.results: Dict[str, AnalysisResult] = {r.transcript_id: r for r in results or []}

    def get_active_themes(self) -> List[CanonicalTheme]:
        return [t for t in self.themes if t.is_active]

    def get_all_analysis_results(self) -> List[AnalysisResult]:
        return list(self.results.values())

    def get_transcript(self, transcript_id: str) -> Transcript:
        try:
            return self.transcripts[transcript_id]
        except KeyError:
            raise TranscriptNotFound(f"Transcript not found: {transcript_id}")

    def list_transcripts(self) -> List[Transcript]:
        return list(self.transcripts.values())

    def upsert_analysis_result(self, transcript_id: str, result: AnalysisResult) -> None:
        self.results[transcript_id] = result

    def get_analysis_result(self, transcript_id: str) -> Optional[AnalysisResult]:
        return self.results.get(transcript_id)


class JsonFileThemeStore(ThemeStore):
    """File-backed store in a data directory.

    Layout:
        themes.json            list of theme objects
        transcripts.jsonl      one transcript object per line
        analysis_results.json  object keyed by transcript id
    """

    THEMES_FILE = "themes.json"
    TRANSCRIPTS_FILE = "transcripts.jsonl"
    RESULTS_FILE = "analysis_results.json"

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        if not self.data_dir.is_dir():
            raise StorageError(f"Data directory not found: {self.data_dir}")
        self.themes_file = self.data_dir / self.THEMES_FILE
        self.transcripts_file = self.data_dir / self.TRANSCRIPTS_FILE
        self.results_file = self.data_dir / self.RESULTS_FILE

    def _read_json(self, path: Path, default):
        if not path.exists():
            return default
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def _load_results(self) -> Dict[str, dict]:
        data = self._read_json(self.results_file, {})
        if not isinstance(data, dict):
            raise StorageError(f"Malformed results file: {self.results_file}")
        return data

    def get_active_themes(self) -> List[CanonicalTheme]:
        data = self._read_json(self.themes_file, [])
        try:
            themes = [CanonicalTheme.from_dict(item) for item in data]
        except (KeyError, ValueError, TypeError) as e:
            raise StorageError(f"Malformed theme entry in {self.themes_file}: {e}") from e
        return [t for t in themes if t.is_active]

    def get_all_analysis_results(self) -> List[AnalysisResult]:
        results = []
        for transcript_id, data in self._load_results().items():
            try:
                results.append(AnalysisResult.from_dict({**data, 'transcript_id': transcript_id}))
            except (KeyError, TypeError) as e:
                # Skip the record rather than losing all usage statistics
                logger.warning(f"Skipping malformed analysis record {transcript_id}: {e}")
        return results

    def list_transcripts(self) -> List[Transcript]:
        if not self.transcripts_file.exists():
            return []
        transcripts = []
        try:
            with jsonlines.open(self.transcripts_file) as reader:
                for line_number, item in enumerate(reader, start=1):
                    try:
                        transcripts.append(Transcript.from_dict(item))
                    except (KeyError, TypeError, AttributeError) as e:
                        logger.warning(f"Skipping malformed transcript on line {line_number}: {e}")
        except (OSError, jsonlines.InvalidLineError) as e:
            raise StorageError(f"Failed to read {self.transcripts_file}: {e}") from e
        return transcripts

    def get_transcript(self, transcript_id: str) -> Transcript:
        for transcript in self.list_transcripts():
            if transcript.id == transcript_id:
                return transcript
        raise TranscriptNotFound(f"Transcript not found: {transcript_id}")

    def upsert_analysis_result(self, transcript_id: str, result: AnalysisResult) -> None:
        results = self._load_results()
        results[transcript_id] = result.to_dict()

        # Write to a temp file and rename so readers never see a partial file
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=".results-", suffix=".json")
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(results, f, indent=2, default=str)
            os.replace(tmp_path, self.results_file)
        except OSError as e:
            if tmp_path:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
            raise StorageError(f"Failed to write analysis for {transcript_id}: {e}") from e
        logger.debug(f"Saved analysis for {transcript_id}")
