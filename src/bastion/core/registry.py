"""Channel registry: durable record of every live defence call.

The registry is the source of truth across restarts: on startup the call
manager replays :meth:`ChannelRegistry.load_all` to rebuild listeners and
timers. The whole document is rewritten on every mutation. A failed write is
logged and the in-memory state keeps serving; durability resumes with the
next successful write.
"""

from __future__ import annotations

import logging
import pathlib

from pydantic import ValidationError

from bastion.core.storage import read_json, write_json_atomic
from bastion.models.defence import ChannelMessage, DefenceCall

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Ordered, file-backed map of channel id to :class:`DefenceCall`."""

    def __init__(self, path: pathlib.Path) -> None:
        self.path = path
        self._calls: dict[str, DefenceCall] = {}

    def load_all(self) -> list[DefenceCall]:
        """Replace in-memory state with the document on disk and return it.

        Records that no longer validate are dropped with a warning.
        """
        raw = read_json(self.path, [])
        if not isinstance(raw, list):
            logger.error("registry_document_malformed path=%s", self.path)
            raw = []
        calls: dict[str, DefenceCall] = {}
        for item in raw:
            try:
                call = DefenceCall.model_validate(item)
            except ValidationError:
                logger.warning("registry_record_skipped record=%r", item)
                continue
            calls[call.channel_id] = call
        self._calls = calls
        logger.info("registry_loaded path=%s count=%d", self.path, len(calls))
        return list(calls.values())

    def get(self, channel_id: str) -> DefenceCall | None:
        return self._calls.get(channel_id)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    def all(self) -> list[DefenceCall]:
        return list(self._calls.values())

    def add(self, call: DefenceCall) -> bool:
        """Register *call*. Returns False if its channel is already tracked."""
        if call.channel_id in self._calls:
            return False
        self._calls[call.channel_id] = call
        self._save()
        return True

    def append_message(self, channel_id: str, message: ChannelMessage) -> bool:
        """Append to a call's message log. Returns False for untracked channels."""
        call = self._calls.get(channel_id)
        if call is None:
            return False
        call.messages.append(message)
        self._save()
        return True

    def replace(self, call: DefenceCall) -> None:
        """Store a mutated copy of a tracked call."""
        if call.channel_id not in self._calls:
            raise KeyError(call.channel_id)
        self._calls[call.channel_id] = call
        self._save()

    def remove(self, channel_id: str) -> bool:
        """Forget a call. Unknown ids are a no-op and do not touch the file."""
        if self._calls.pop(channel_id, None) is None:
            return False
        self._save()
        return True

    def _save(self) -> None:
        payload = [call.model_dump(mode="json") for call in self._calls.values()]
        try:
            write_json_atomic(self.path, payload)
        except OSError:
            logger.exception("registry_save_failed path=%s", self.path)
