from __future__ import annotations

import itertools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from .config_loader import DedupeConfig
from .errors import StoreReadError
from .grouping import find_duplicate_groups, find_incomplete_records, is_blank
from .matching import MatchRule
from .models import ScanResult
from .store import ContactStore

logger = logging.getLogger(__name__)


def build_match_rule(config: DedupeConfig) -> MatchRule:
    return MatchRule(
        distance_floor=config.name_distance_floor,
        distance_ratio=config.name_distance_ratio,
        short_name_length=config.short_name_length,
    )


class ContactScanner:
    """
    Fetch, group and summarise the address book.

    ``scan_async`` runs the whole pipeline on a worker thread and hands back a
    future for a single immutable :class:`ScanResult`. ``latest`` only ever
    moves to the result of the most recently started scan that succeeded; a
    failed scan keeps the previous result in place.
    """

    def __init__(self, store: ContactStore, config: Optional[DedupeConfig] = None):
        self.store = store
        self.config = config or DedupeConfig()
        self.rule = build_match_rule(self.config)
        self._latest: Optional[ScanResult] = None
        self._published_ticket = -1
        self._tickets = itertools.count()
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def latest(self) -> Optional[ScanResult]:
        return self._latest

    def _compute(self) -> ScanResult:
        try:
            records = self.store.fetch_all()
        except StoreReadError:
            logger.error("Contact scan aborted, could not read the store")
            raise
        except Exception as exc:
            logger.error("Contact scan aborted: %s", exc)
            raise StoreReadError(f"Failed to load contacts: {exc}") from exc

        if self.config.skip_blank_records:
            candidates = [record for record in records if not is_blank(record)]
        else:
            candidates = list(records)
        groups = find_duplicate_groups(
            candidates, rule=self.rule, transitive=self.config.transitive_grouping
        )
        return ScanResult(
            groups=tuple(groups),
            incomplete=tuple(find_incomplete_records(candidates)),
            total_records=len(candidates),
        )

    def _run(self, ticket: int) -> ScanResult:
        result = self._compute()
        with self._lock:
            if ticket > self._published_ticket:
                self._published_ticket = ticket
                self._latest = result
            else:
                logger.debug("Discarding stale scan result %d", ticket)
        return result

    def scan(self) -> ScanResult:
        return self._run(next(self._tickets))

    def _ensure_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="contact-scan")
            return self._executor

    def scan_async(self) -> "Future[ScanResult]":
        return self._ensure_executor().submit(self._run, next(self._tickets))

    def close(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def __enter__(self) -> "ContactScanner":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
