"""Prompt record persistence.

PromptStore is the only component that reads or writes the `prompts`
collection. It sits on any store connector (kind="store") and adds the
record semantics: soft delete, ordering, partial updates and the
user-facing result messages.
"""

from __future__ import annotations

import datetime as _dt
import logging
from typing import Any, Callable, List, Mapping, Optional

from pydantic import ValidationError

from genflow.core.connectors.base import StoreBackend
from genflow.core.exception import ConnectorError, CorruptRecord, NotFound, StoreError
from genflow.core.spec import ArchiveResult, PromptRecord, SavePromptInput, SaveResult

log = logging.getLogger("genflow.core.store")

PROMPTS = "prompts"
DEFAULT_PROMPT_NAME = "未命名"

MSG_SAVED = "提示词已成功保存。"
MSG_UPDATED = "提示词已成功更新。"
MSG_SAVE_FAILED = "保存提示词时发生错误。"
MSG_ARCHIVED = "提示词已成功归档。"
MSG_ARCHIVE_NOT_FOUND = "未找到要归档的提示词。"
MSG_ARCHIVE_FAILED = "归档提示词时发生错误。"

_EPOCH = _dt.datetime.min.replace(tzinfo=_dt.timezone.utc)


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def _sort_key(rec: PromptRecord) -> _dt.datetime:
    ts = rec.updated_at
    if ts is None:
        return _EPOCH
    return ts if ts.tzinfo else ts.replace(tzinfo=_dt.timezone.utc)


class PromptStore:
    """Record operations over the `prompts` collection.

    `backend` is a store connector, or a zero-argument callable returning
    one (resolved on first use, so connector errors surface as operation
    failures). `clock` returns the timestamp written to createdAt/updatedAt.
    """

    def __init__(
        self,
        backend: StoreBackend | Callable[[], StoreBackend],
        *,
        clock: Callable[[], _dt.datetime] | None = None,
        collection: str = PROMPTS,
    ):
        self._backend = backend
        self._clock = clock or _utcnow
        self.collection = collection

    @property
    def backend(self) -> StoreBackend:
        if not hasattr(self._backend, "stream") and callable(self._backend):
            self._backend = self._backend()
        return self._backend  # type: ignore[return-value]

    def _now(self) -> str:
        return self._clock().isoformat()

    def _record(self, doc_id: str, doc: Mapping[str, Any]) -> PromptRecord:
        try:
            return PromptRecord.model_validate({**doc, "id": doc_id})
        except ValidationError as e:
            raise CorruptRecord(self.collection, doc_id, str(e)) from e

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def list(self) -> List[PromptRecord]:
        """Non-archived records, most recently updated first.

        Raises StoreUnavailable when the store cannot be read.
        """
        out: List[PromptRecord] = []
        for doc_id, doc in self.backend.stream(self.collection):
            if doc.get("archived") is True:
                continue
            try:
                out.append(self._record(doc_id, doc))
            except CorruptRecord:
                log.warning("skipping unreadable prompt record id=%s", doc_id, exc_info=True)
        out.sort(key=_sort_key, reverse=True)
        return out

    def get(self, doc_id: str) -> PromptRecord:
        """Fetch one record, archived or not. Raises NotFound or CorruptRecord."""
        doc = self.backend.get(self.collection, doc_id)
        if doc is None:
            raise NotFound(self.collection, doc_id)
        return self._record(doc_id, doc)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    def save(self, record: SavePromptInput | Mapping[str, Any]) -> SaveResult:
        """Create or partially update a record.

        The resulting document is checked against PromptRecord before it is
        written; a save that would leave an unreadable record is refused.
        """
        if isinstance(record, SavePromptInput):
            rec = record
        else:
            try:
                rec = SavePromptInput.model_validate(record)
            except ValidationError:
                log.warning("saving prompt refused: invalid record", exc_info=True)
                return SaveResult(id=str(record.get("id") or ""), success=False, message=MSG_SAVE_FAILED)
        changes = rec.changes()
        now = self._now()
        try:
            backend = self.backend
            if rec.id:
                existing = backend.get(self.collection, rec.id)
                if existing is None:
                    # Unknown identity: create it under that id so retries stay idempotent.
                    patch = self._new_doc(changes, now)
                    self._check(rec.id, patch)
                else:
                    patch = {**changes, "updatedAt": now}
                    self._check(rec.id, {**existing, **patch})
                backend.merge(self.collection, rec.id, patch)
                log.info("prompt updated id=%s fields=%s", rec.id, sorted(changes))
                return SaveResult(id=rec.id, success=True, message=MSG_UPDATED)

            doc = self._new_doc(changes, now)
            self._check("<new>", doc)
            new_id = backend.add(self.collection, doc)
            log.info("prompt created id=%s", new_id)
            return SaveResult(id=new_id, success=True, message=MSG_SAVED)
        except CorruptRecord as e:
            log.warning("saving prompt refused id=%s: %s", rec.id, e.reason)
            return SaveResult(id=rec.id or "", success=False, message=MSG_SAVE_FAILED)
        except (StoreError, ConnectorError):
            log.error("saving prompt failed id=%s", rec.id, exc_info=True)
            return SaveResult(id=rec.id or "", success=False, message=MSG_SAVE_FAILED)

    def _check(self, doc_id: str, doc: Mapping[str, Any]) -> None:
        self._record(doc_id, doc)

    @staticmethod
    def _new_doc(changes: Mapping[str, Any], now: str) -> dict:
        doc = {"name": DEFAULT_PROMPT_NAME, "scope": "general", "userPrompt": ""}
        doc.update(changes)
        doc.update({"createdAt": now, "updatedAt": now, "archived": False})
        return doc

    def archive(self, doc_id: str) -> ArchiveResult:
        """Soft delete. Never raises for a missing id or a store failure."""
        try:
            self.backend.update(self.collection, doc_id, {"archived": True, "updatedAt": self._now()})
        except NotFound:
            log.warning("archive: prompt not found id=%s", doc_id)
            return ArchiveResult(success=False, message=MSG_ARCHIVE_NOT_FOUND)
        except (StoreError, ConnectorError):
            log.error("archiving prompt failed id=%s", doc_id, exc_info=True)
            return ArchiveResult(success=False, message=MSG_ARCHIVE_FAILED)
        log.info("prompt archived id=%s", doc_id)
        return ArchiveResult(success=True, message=MSG_ARCHIVED)

    def find(self, doc_id: str) -> Optional[PromptRecord]:
        try:
            return self.get(doc_id)
        except NotFound:
            return None
