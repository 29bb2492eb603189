"""Track which transcripts have been analyzed so batches can resume."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"


class ProcessingTracker:
    """Tracks per-transcript analysis state to enable incremental runs."""

    def __init__(self, state_file: Path):
        self.state_file = Path(state_file)
        self.state: Dict[str, Dict] = self._load_state()

    def _load_state(self) -> Dict[str, Dict]:
        """Load existing processing state from file."""
        if self.state_file.exists():
            try:
                with open(self.state_file, 'r') as f:
                    state = json.load(f)
                if not isinstance(state, dict):
                    raise ValueError("state file does not hold an object")
                return state
            except Exception as e:
                logger.warning(f"Failed to load processing state, starting fresh: {e}")
                return {}
        return {}

    def _save_state(self):
        """Save processing state to file."""
        try:
            with open(self.state_file, 'w') as f:
                json.dump(self.state, f, indent=2, default=str)
        except Exception as e:
            logger.error(f"Failed to save processing state: {e}")

    def _attempts(self, transcript_id: str) -> int:
        return self.state.get(transcript_id, {}).get('attempts', 0)

    def status_of(self, transcript_id: str) -> Optional[str]:
        return self.state.get(transcript_id, {}).get('status')

    def is_processed(self, transcript_id: str) -> bool:
        return self.status_of(transcript_id) == STATUS_PROCESSED

    def is_failed(self, transcript_id: str) -> bool:
        return self.status_of(transcript_id) == STATUS_FAILED

    def mark_processed(self, transcript_id: str, pass_count: int = 1):
        """Mark a transcript as successfully analyzed."""
        self.state[transcript_id] = {
            'status': STATUS_PROCESSED,
            'attempts': self._attempts(transcript_id) + 1,
            'last_error': None,
            'pass_count': pass_count,
            'completed_at': datetime.now(timezone.utc).isoformat(),
        }
        self._save_state()

    def mark_failed(self, transcript_id: str, error: str):
        """Record a failed analysis attempt."""
        self.state[transcript_id] = {
            'status': STATUS_FAILED,
            'attempts': self._attempts(transcript_id) + 1,
            'last_error': error,
            'pass_count': 0,
            'completed_at': None,
        }
        self._save_state()

    def get_pending(self, transcript_ids: Sequence[str], force_all: bool = False,
                    retry_failed: bool = False) -> List[str]:
        """Filter transcript ids down to those that still need analysis.

        Never-seen ids are always pending. Failed ids are pending only
        with retry_failed; force_all returns everything.
        """
        if force_all:
            logger.info("Processing all transcripts (--all flag used)")
            return list(transcript_ids)

        pending = []
        for transcript_id in transcript_ids:
            status = self.status_of(transcript_id)
            if status is None or (status == STATUS_FAILED and retry_failed):
                pending.append(transcript_id)

        logger.info(f"Found {len(pending)} transcripts needing analysis out of {len(transcript_ids)} total")
        return pending

    def get_statistics(self) -> Dict:
        """Get statistics about analyzed transcripts."""
        if not self.state:
            return {
                'total_transcripts': 0,
                'processed': 0,
                'failed': 0,
                'refined': 0,
                'total_attempts': 0,
                'last_processed': None,
                'oldest_processed': None
            }

        processed = [s for s in self.state.values() if s.get('status') == STATUS_PROCESSED]
        processed_times = [datetime.fromisoformat(s['completed_at'])
                           for s in processed if s.get('completed_at')]

        return {
            'total_transcripts': len(self.state),
            'processed': len(processed),
            'failed': sum(1 for s in self.state.values() if s.get('status') == STATUS_FAILED),
            'refined': sum(1 for s in processed if s.get('pass_count', 0) > 1),
            'total_attempts': sum(s.get('attempts', 0) for s in self.state.values()),
            'last_processed': max(processed_times).isoformat() if processed_times else None,
            'oldest_processed': min(processed_times).isoformat() if processed_times else None
        }
