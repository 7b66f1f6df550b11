import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from .log import EventLogger, get_logger
from .models import IssueCommentEvent, PullRequestEvent

DEFAULT_MAX_WORKERS = 8

logger = get_logger(__name__)


@dataclass
class EventRecord:
    event_type: str
    guid: str
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class EventDispatcher:
    """Runs event handlers on a bounded pool of worker threads.

    Each delivery becomes one task; concurrency is capped by ``max_workers``.
    Handler failures are logged and collected rather than lost.
    """

    def __init__(self, cherrypicker, max_workers: int = DEFAULT_MAX_WORKERS):
        self.cherrypicker = cherrypicker
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="cherrypick"
        )
        self._lock = threading.Lock()
        self._futures: list[Future] = []
        self.records: list[EventRecord] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown(wait=True)

    @property
    def errors(self) -> list[EventRecord]:
        with self._lock:
            return [r for r in self.records if not r.ok]

    def dispatch(
        self, event_type: str, guid: str, payload: bytes | str | dict
    ) -> Future | None:
        """Decode a webhook payload and schedule its handler.

        Returns:
            The scheduled task, or None when the event type is not handled.

        Raises:
            pydantic.ValidationError: If the payload does not match the event type.
        """
        log = EventLogger(logger, {"event-type": event_type, "event-GUID": guid})

        handler: Callable[[Any, EventLogger], None]
        model: type[BaseModel]
        if event_type == "issue_comment":
            model, handler = IssueCommentEvent, self.cherrypicker.handle_issue_comment
        elif event_type == "pull_request":
            model, handler = PullRequestEvent, self.cherrypicker.handle_pull_request
        else:
            log.debug("skipping event of type %s", event_type)
            return None

        if isinstance(payload, dict):
            event = model.model_validate(payload)
        else:
            event = model.model_validate_json(payload)

        record = EventRecord(event_type, guid)
        future = self._executor.submit(self._run, handler, event, record, log)
        with self._lock:
            self._futures.append(future)
        return future

    def _run(
        self, handler, event, record: EventRecord, log: EventLogger
    ) -> EventRecord:
        try:
            handler(event, log)
        except Exception as e:
            log.info("Cherry-pick failed: %s", e, exc_info=True)
            record.error = e
        with self._lock:
            self.records.append(record)
        return record

    def wait(self) -> None:
        """Block until every task scheduled so far has finished."""
        with self._lock:
            pending = list(self._futures)
        wait_futures(pending)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
