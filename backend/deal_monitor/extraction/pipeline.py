"""Extraction pipeline: mailbox → Gemini → owner lookup → sheet → processed label.

The per-message flow is split in two. ``precheck`` and ``decide`` form a pure
decision core that only looks at the message, its thread labels and the
typed extraction/enrichment outcomes. ``process_message`` is the shell that
performs the external calls and applies the decision (sheet write, mark read,
add label).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, List, Optional

import structlog

from deal_monitor.config import AppConfig
from deal_monitor.email.client import GmailIMAPClient, Mailbox, MailboxMessage, MailboxThread
from deal_monitor.enrichment import OwnerLookup, OwnerLookupClient, OwnerLookupError
from deal_monitor.export.sheet_sink import SheetSink
from deal_monitor.extraction.llm import (
    ExtractionError,
    ExtractionOutcome,
    ExtractionStatus,
    Extractor,
    GeminiExtractionClient,
)
from deal_monitor.schemas import CombinedRecord, ExtractionResult, OwnerLookupResult, assemble_record

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageStatus(str, Enum):
    """Terminal state of one message in a run."""

    SKIPPED_ALREADY_PROCESSED = "skipped_already_processed"
    SKIPPED_EMPTY_BODY = "skipped_empty_body"
    EXTRACTION_FAILED = "extraction_failed"  # hard: HTTP / transport error
    NOTHING_EXTRACTED = "nothing_extracted"  # soft: empty or malformed model output
    ENRICHMENT_FAILED = "enrichment_failed"  # only when the owner lookup is required
    DONE = "done"
    ERROR = "error"  # unexpected exception, e.g. the mailbox dropped mid-run


_FAILURES = {MessageStatus.EXTRACTION_FAILED, MessageStatus.ENRICHMENT_FAILED, MessageStatus.ERROR}


class EnrichmentStatus(str, Enum):
    LOOKED_UP = "looked_up"
    FAILED = "failed"


@dataclass(frozen=True)
class EnrichmentOutcome:
    status: EnrichmentStatus
    result: Optional[OwnerLookupResult] = None
    reason: str = ""


@dataclass(frozen=True)
class Decision:
    """What to do with a message once every call for it has returned."""

    status: MessageStatus
    record: Optional[CombinedRecord] = None
    reason: str = ""

    @property
    def should_mark(self) -> bool:
        return self.status is MessageStatus.DONE


@dataclass
class MessageResult:
    uid: int
    thread_id: str
    status: MessageStatus
    logged: bool = False
    marked: bool = False
    error: str = ""


@dataclass
class RunSummary:
    """Result summary after a run."""

    threads_found: int = 0
    messages_seen: int = 0
    skipped: int = 0
    extracted: int = 0
    rows_logged: int = 0
    marked: int = 0
    errors: List[str] = field(default_factory=list)
    results: List[MessageResult] = field(default_factory=list)

    def add(self, result: MessageResult) -> None:
        self.results.append(result)
        self.messages_seen += 1
        if result.status in (MessageStatus.SKIPPED_ALREADY_PROCESSED, MessageStatus.SKIPPED_EMPTY_BODY):
            self.skipped += 1
        if result.status in (MessageStatus.DONE, MessageStatus.ENRICHMENT_FAILED):
            self.extracted += 1
        if result.logged:
            self.rows_logged += 1
        if result.marked:
            self.marked += 1
        if result.status in _FAILURES or result.error:
            self.errors.append(f"uid={result.uid}: {result.status.value}: {result.error}")


# ── Decision core ─────────────────────────────────────────


def precheck(
    message: MailboxMessage, thread_labels: Iterable[str], processed_label: str
) -> Optional[MessageStatus]:
    """Return the skip status for a message that must not be processed, else None."""
    if processed_label in set(thread_labels):
        return MessageStatus.SKIPPED_ALREADY_PROCESSED
    if not message.email.has_body:
        return MessageStatus.SKIPPED_EMPTY_BODY
    return None


def decide(
    message: MailboxMessage,
    extraction: ExtractionOutcome,
    enrichment: Optional[EnrichmentOutcome],
    *,
    owner_lookup_required: bool,
    logged_at: datetime,
) -> Decision:
    """Pick the terminal status and the record to log for one message."""
    if extraction.status is ExtractionStatus.FAILED:
        return Decision(MessageStatus.EXTRACTION_FAILED, reason=extraction.reason)
    if extraction.status is ExtractionStatus.EMPTY or extraction.result is None:
        return Decision(MessageStatus.NOTHING_EXTRACTED, reason=extraction.reason)

    owner: Optional[OwnerLookupResult] = None
    reason = ""
    if enrichment is not None:
        if enrichment.status is EnrichmentStatus.FAILED:
            if owner_lookup_required:
                return Decision(MessageStatus.ENRICHMENT_FAILED, reason=enrichment.reason)
            reason = enrichment.reason
        else:
            owner = enrichment.result

    record = assemble_record(
        extraction.result,
        owner,
        email_date=message.email.date_dt,
        sender=message.email.sender,
        subject=message.email.subject,
        logged_at=logged_at,
    )
    return Decision(MessageStatus.DONE, record=record, reason=reason)


# ── Effects shell ─────────────────────────────────────────


def _run_extraction(extractor: Extractor, message: MailboxMessage) -> ExtractionOutcome:
    try:
        return extractor.extract(message.email.body_text)
    except ExtractionError as exc:
        logger.error("extraction_failed", error=str(exc))
        return ExtractionOutcome.failed(exc)


def _run_enrichment(owner_lookup: OwnerLookup, extraction: ExtractionResult) -> EnrichmentOutcome:
    try:
        return EnrichmentOutcome(EnrichmentStatus.LOOKED_UP, result=owner_lookup.lookup(extraction))
    except OwnerLookupError as exc:
        logger.error("owner_lookup_failed", error=str(exc))
        return EnrichmentOutcome(EnrichmentStatus.FAILED, reason=str(exc))


def process_message(
    message: MailboxMessage,
    thread: MailboxThread,
    *,
    config: AppConfig,
    mailbox: Mailbox,
    extractor: Extractor,
    owner_lookup: OwnerLookup,
    sink: SheetSink,
    clock: Clock = _utcnow,
) -> MessageResult:
    """Run one message through the pipeline and apply the resulting decision."""
    email = message.email
    logger.info("processing_message", sender=email.sender, date=email.date_raw, subject=email.subject)

    skip = precheck(message, mailbox.thread_labels(thread.thread_id), config.processed_label)
    if skip is not None:
        logger.info("message_skipped", reason=skip.value)
        return MessageResult(message.uid, thread.thread_id, skip)

    extraction = _run_extraction(extractor, message)
    enrichment: Optional[EnrichmentOutcome] = None
    if extraction.status is ExtractionStatus.EXTRACTED and extraction.result is not None:
        logger.info("extracted_data", fields=extraction.result.model_dump(mode="json", by_alias=True))
        enrichment = _run_enrichment(owner_lookup, extraction.result)
    elif extraction.status is ExtractionStatus.EMPTY:
        logger.warning("nothing_extracted", reason=extraction.reason)

    decision = decide(
        message,
        extraction,
        enrichment,
        owner_lookup_required=config.owner_lookup_required,
        logged_at=clock(),
    )
    result = MessageResult(message.uid, thread.thread_id, decision.status, error=decision.reason)

    if decision.record is not None:
        result.logged = sink.log(decision.record)

    if decision.should_mark:
        try:
            mailbox.mark_read(message)
            mailbox.add_label(thread, config.processed_label)
            result.marked = True
            logger.info("message_marked", label=config.processed_label)
        except Exception as exc:
            # Earlier effects (the sheet row) stay in place
            logger.error("message_mark_failed", error=str(exc))
            result.error = f"mark failed: {exc}"

    return result


def run_batch(
    config: AppConfig,
    mailbox: Mailbox,
    extractor: Extractor,
    owner_lookup: OwnerLookup,
    sink: SheetSink,
    *,
    max_threads: Optional[int] = None,
    clock: Clock = _utcnow,
) -> RunSummary:
    """Process every message of up to *max_threads* unprocessed threads.

    A failure while handling one message is logged and recorded; the loop
    always moves on to the next message.
    """
    summary = RunSummary()

    mailbox.ensure_label(config.processed_label)
    threads = mailbox.search_threads(config.search_query, max_threads or config.max_threads_per_run)
    summary.threads_found = len(threads)
    logger.info("threads_found", count=len(threads), query=config.search_query)

    for thread in threads:
        logger.info("processing_thread", thread_id=thread.thread_id, subject=thread.first_subject, messages=len(thread.messages))
        for message in thread.messages:
            with structlog.contextvars.bound_contextvars(
                uid=message.uid,
                thread_id=thread.thread_id,
                message_id=message.email.message_id,
            ):
                try:
                    result = process_message(
                        message,
                        thread,
                        config=config,
                        mailbox=mailbox,
                        extractor=extractor,
                        owner_lookup=owner_lookup,
                        sink=sink,
                        clock=clock,
                    )
                except Exception as exc:
                    logger.error("message_processing_error", error=str(exc))
                    result = MessageResult(message.uid, thread.thread_id, MessageStatus.ERROR, error=str(exc))
            summary.add(result)

    logger.info(
        "run_complete",
        threads=summary.threads_found,
        messages=summary.messages_seen,
        skipped=summary.skipped,
        extracted=summary.extracted,
        logged=summary.rows_logged,
        marked=summary.marked,
        errors=len(summary.errors),
    )
    return summary


def run(config: AppConfig, *, max_threads: Optional[int] = None) -> RunSummary:
    """Wire the real Gmail, Gemini, owner lookup and workbook clients and run once."""
    sink = SheetSink(config)
    with GmailIMAPClient(config) as mailbox, GeminiExtractionClient(config) as extractor, OwnerLookupClient(
        config
    ) as owner_lookup:
        return run_batch(config, mailbox, extractor, owner_lookup, sink, max_threads=max_threads)
