"""
All-or-nothing ingestion of client log batches.

A batch is validated in full before storage is touched. Valid batches are
inserted inside a single transaction; if any insert fails the transaction
is rolled back and no entry of the batch is persisted.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from coupleapp.errors import ValidationError
from coupleapp.models import LogEntry
from coupleapp.schemas import LogEntryIn
from coupleapp.storage import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class CommitResult:
    saved_count: int


class LogBatchCommitter:
    def __init__(self, store: RecordStore):
        self.store = store

    def validate(self, entries: Any) -> list[LogEntryIn]:
        """
        Check every entry of a batch without writing anything.

        Raises:
            ValidationError: listing each invalid entry by index and the
                fields that were missing or empty
        """
        if not isinstance(entries, Sequence) or isinstance(entries, (str, bytes)):
            raise ValidationError("log batch must be a list of entries")
        if len(entries) == 0:
            raise ValidationError("no log entries provided")

        validated: list[LogEntryIn] = []
        problems: list[dict] = []
        for index, entry in enumerate(entries):
            if isinstance(entry, LogEntryIn):
                validated.append(entry)
                continue
            if not isinstance(entry, Mapping):
                problems.append({"index": index, "fields": [], "message": "entry must be an object"})
                continue
            try:
                validated.append(LogEntryIn.model_validate(dict(entry)))
            except PydanticValidationError as e:
                fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
                problems.append({"index": index, "fields": fields, "message": "missing or empty fields"})

        if problems:
            logger.warning(f"Rejected log batch of {len(entries)}: {len(problems)} invalid entries")
            raise ValidationError(
                "log batch rejected, nothing was saved",
                {"invalid_entries": problems},
            )
        return validated

    def commit_batch(self, entries: Any) -> CommitResult:
        """
        Validate and persist a batch of log entries as one unit.

        Returns:
            CommitResult whose saved_count equals the batch length

        Raises:
            ValidationError: some entry is invalid; storage untouched
            StorageError: an insert or the commit failed; transaction rolled back
        """
        validated = self.validate(entries)

        with self.store.transaction() as db:
            for entry in validated:
                db.add(LogEntry(**entry.model_dump()))
                # Flush row by row so a failing insert aborts at its position
                db.flush()

        logger.info(f"Saved {len(validated)} log entries")
        return CommitResult(saved_count=len(validated))
