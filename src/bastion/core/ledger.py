"""Submission ledger: matched pledges for calls still under review.

Entries exist only while a call's listener is running; once the listener
ends (completion or expiry) the channel's entries are purged. The ledger is
not a history.
"""

from __future__ import annotations

import logging
import pathlib

from pydantic import ValidationError

from bastion.core.storage import read_json, write_json_atomic
from bastion.models.defence import Submission

logger = logging.getLogger(__name__)


class SubmissionLedger:
    """File-backed ``channel_id -> [Submission]`` mapping."""

    def __init__(self, path: pathlib.Path) -> None:
        self.path = path
        self._submissions: dict[str, list[Submission]] = {}

    def load(self) -> None:
        raw = read_json(self.path, {})
        entries = raw.get("submissions", {}) if isinstance(raw, dict) else {}
        loaded: dict[str, list[Submission]] = {}
        for channel_id, items in entries.items():
            try:
                loaded[channel_id] = [Submission.model_validate(item) for item in items]
            except (ValidationError, TypeError):
                logger.warning("ledger_entry_skipped channel=%s", channel_id)
        self._submissions = loaded

    def record(self, submission: Submission) -> None:
        self._submissions.setdefault(submission.channel_id, []).append(submission)
        logger.info(
            "ledger_submission_recorded channel=%s units=%d user=%s",
            submission.channel_id,
            submission.units,
            submission.user_id,
        )
        self._save()

    def for_channel(self, channel_id: str) -> list[Submission]:
        return list(self._submissions.get(channel_id, []))

    def channels(self) -> list[str]:
        return list(self._submissions)

    def snapshot(self) -> dict[str, list[Submission]]:
        return {cid: list(subs) for cid, subs in self._submissions.items()}

    def purge(self, channel_id: str) -> bool:
        """Drop a channel's entries. Returns False (and skips the write) if none."""
        if self._submissions.pop(channel_id, None) is None:
            return False
        logger.info("ledger_channel_purged channel=%s", channel_id)
        self._save()
        return True

    def _save(self) -> None:
        payload = {
            "submissions": {
                cid: [s.model_dump(mode="json") for s in subs]
                for cid, subs in self._submissions.items()
            }
        }
        try:
            write_json_atomic(self.path, payload)
        except OSError:
            logger.exception("ledger_save_failed path=%s", self.path)
