"""Gmail IMAP client: label search, thread grouping and processed-label side effects.

Gmail exposes its search syntax, thread ids and labels over IMAP through the
``X-GM-RAW``, ``X-GM-THRID`` and ``X-GM-LABELS`` extensions, so the whole
mailbox contract runs over one IMAP connection.
"""

from __future__ import annotations

import email as email_lib
import imaplib
import re
import socket
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Set, Tuple

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from deal_monitor.config import AppConfig
from deal_monitor.email.parser import ParsedEmailData, parse_email_message

logger = structlog.get_logger(__name__)

# Transient errors worth retrying while connecting
_RETRYABLE = (
    imaplib.IMAP4.abort,
    socket.timeout,
    ConnectionResetError,
    ConnectionRefusedError,
)


class MailboxError(RuntimeError):
    """An IMAP command came back with a non-OK status."""


@dataclass(frozen=True)
class MailboxMessage:
    """One message in a thread, with the IMAP coordinates needed to act on it."""

    uid: int
    thread_id: str
    email: ParsedEmailData


@dataclass(frozen=True)
class MailboxThread:
    """A Gmail conversation and its messages, oldest first."""

    thread_id: str
    messages: List[MailboxMessage] = field(default_factory=list)

    @property
    def first_subject(self) -> str:
        return self.messages[0].email.subject if self.messages else ""


class Mailbox(Protocol):
    """What the pipeline needs from a mailbox."""

    def ensure_label(self, name: str) -> None: ...

    def search_threads(self, query: str, max_threads: int) -> List[MailboxThread]: ...

    def thread_labels(self, thread_id: str) -> Set[str]: ...

    def mark_read(self, message: MailboxMessage) -> None: ...

    def add_label(self, thread: MailboxThread, name: str) -> None: ...


# ── IMAP response helpers ─────────────────────────────────

_UID_RE = re.compile(rb"\bUID (\d+)")
_THRID_RE = re.compile(rb"\bX-GM-THRID (\d+)")
_LABELS_RE = re.compile(rb"\bX-GM-LABELS \(([^)]*)\)")
_LABEL_TOKEN_RE = re.compile(r'"((?:[^"\\]|\\.)*)"|([^\s"]+)')


def quote_imap(value: str) -> str:
    """Quote a string argument for an IMAP command."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def parse_label_list(raw: str) -> Set[str]:
    """Parse the inside of an ``X-GM-LABELS (...)`` list into label names."""
    labels: Set[str] = set()
    for quoted, bare in _LABEL_TOKEN_RE.findall(raw):
        name = re.sub(r"\\(.)", r"\1", quoted) if quoted else bare
        if name:
            labels.add(name)
    return labels


def _response_headers(data: Sequence[object]) -> List[bytes]:
    """Return the attribute line of each FETCH response item."""
    lines: List[bytes] = []
    for item in data:
        if isinstance(item, tuple) and item:
            head = item[0]
        else:
            head = item
        if isinstance(head, bytes) and head.strip() != b")":
            lines.append(head)
    return lines


def parse_fetch_attributes(data: Sequence[object]) -> Dict[int, Tuple[Optional[str], Set[str]]]:
    """Map UID -> (thread id, labels) from a ``UID FETCH (X-GM-THRID X-GM-LABELS)`` reply."""
    result: Dict[int, Tuple[Optional[str], Set[str]]] = {}
    for line in _response_headers(data):
        uid_match = _UID_RE.search(line)
        if not uid_match:
            continue
        thrid_match = _THRID_RE.search(line)
        labels_match = _LABELS_RE.search(line)
        thread_id = thrid_match.group(1).decode() if thrid_match else None
        labels = (
            parse_label_list(labels_match.group(1).decode("utf-8", errors="replace"))
            if labels_match
            else set()
        )
        result[int(uid_match.group(1))] = (thread_id, labels)
    return result


def _uid_set(uids: Sequence[int]) -> str:
    return ",".join(str(u) for u in uids)


# ── Client ────────────────────────────────────────────────


class GmailIMAPClient:
    """Gmail IMAP connection wrapper with retry, timeout, and context-manager support.

    Usage::

        with GmailIMAPClient(config) as mailbox:
            for thread in mailbox.search_threads(config.search_query, 5):
                ...
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._mail: imaplib.IMAP4_SSL | None = None

    # ── Context manager ───────────────────────────────────
    def __enter__(self) -> "GmailIMAPClient":
        self.connect()
        return self

    def __exit__(self, *exc: object) -> None:
        self.disconnect()

    # ── Connection ────────────────────────────────────────
    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=15),
        reraise=True,
    )
    def connect(self) -> None:
        """Establish the IMAP connection and select the configured folder."""
        cfg = self._config
        logger.info("imap_connecting", host=cfg.imap_host, port=cfg.imap_port)
        self._mail = imaplib.IMAP4_SSL(cfg.imap_host, cfg.imap_port, timeout=cfg.imap_timeout_sec)

        logger.info("imap_logging_in", username=cfg.email_username)
        self._mail.login(cfg.email_username, cfg.email_password.get_secret_value())

        status, _ = self._mail.select(quote_imap(cfg.email_folder))
        if status != "OK":
            raise MailboxError(f"Cannot select folder: {cfg.email_folder}")
        logger.info("imap_folder_selected", folder=cfg.email_folder)

    def disconnect(self) -> None:
        """Safely close the IMAP connection."""
        if self._mail is not None:
            try:
                self._mail.logout()
                logger.debug("imap_disconnected")
            except (imaplib.IMAP4.error, OSError) as exc:
                logger.debug("imap_logout_failed", error=str(exc))
            finally:
                self._mail = None

    def _ensure_connected(self) -> imaplib.IMAP4_SSL:
        if self._mail is None:
            raise MailboxError("IMAP client not connected, call connect() first")
        return self._mail

    # ── Low-level commands ────────────────────────────────
    def _uid_search(self, *criteria: str) -> List[int]:
        mail = self._ensure_connected()
        status, data = mail.uid("SEARCH", None, *criteria)
        if status != "OK":
            raise MailboxError(f"IMAP UID SEARCH failed: {' '.join(criteria)}")
        tokens = (data[0] or b"").split() if data else []
        return sorted(int(t) for t in tokens)

    def _fetch_attributes(self, uids: Sequence[int]) -> Dict[int, Tuple[Optional[str], Set[str]]]:
        if not uids:
            return {}
        mail = self._ensure_connected()
        status, data = mail.uid("FETCH", _uid_set(uids), "(X-GM-THRID X-GM-LABELS)")
        if status != "OK":
            raise MailboxError("IMAP UID FETCH (X-GM-THRID X-GM-LABELS) failed")
        return parse_fetch_attributes(data or [])

    def _thread_uids(self, thread_id: str) -> List[int]:
        return self._uid_search("X-GM-THRID", thread_id)

    def _fetch_message(self, uid: int, thread_id: str) -> Optional[MailboxMessage]:
        """Fetch one message without setting its \\Seen flag."""
        mail = self._ensure_connected()
        status, fetched = mail.uid("FETCH", str(uid), "(BODY.PEEK[])")
        if status != "OK" or not fetched:
            logger.warning("imap_fetch_failed", uid=uid)
            return None

        raw_email: bytes | None = None
        for item in fetched:
            if isinstance(item, tuple) and len(item) >= 2 and isinstance(item[1], bytes):
                raw_email = item[1]
                break
        if not raw_email:
            logger.warning("imap_empty_payload", uid=uid)
            return None

        parsed = parse_email_message(email_lib.message_from_bytes(raw_email))
        return MailboxMessage(uid=uid, thread_id=thread_id, email=parsed)

    # ── Mailbox contract ──────────────────────────────────
    def ensure_label(self, name: str) -> None:
        """Create the Gmail label if it does not exist yet."""
        mail = self._ensure_connected()
        status, data = mail.list('""', quote_imap(name))
        if status == "OK" and data and data[0] is not None:
            return
        status, _ = mail.create(quote_imap(name))
        if status != "OK":
            raise MailboxError(f"Cannot create label {name!r}; create it manually")
        logger.info("imap_label_created", label=name)

    def search_threads(self, query: str, max_threads: int) -> List[MailboxThread]:
        """Return up to *max_threads* threads with a message matching the Gmail *query*.

        Threads are ordered newest first by their latest matching message,
        like the Gmail web search, so a thread that keeps failing cannot hold
        the whole cap against newer mail.
        """
        uids = self._uid_search("X-GM-RAW", quote_imap(query))
        attributes = self._fetch_attributes(uids)

        newest: Dict[str, int] = {}
        for uid in uids:
            thread_id = attributes.get(uid, (None, set()))[0]
            if thread_id:
                newest[thread_id] = max(uid, newest.get(thread_id, 0))
        thread_ids = sorted(newest, key=newest.__getitem__, reverse=True)

        if len(thread_ids) > max_threads:
            logger.info(
                "imap_threads_capped",
                total=len(thread_ids),
                kept=max_threads,
                remaining=len(thread_ids) - max_threads,
            )
            thread_ids = thread_ids[:max_threads]

        threads: List[MailboxThread] = []
        for thread_id in thread_ids:
            messages = []
            for uid in self._thread_uids(thread_id):
                message = self._fetch_message(uid, thread_id)
                if message is not None:
                    messages.append(message)
            threads.append(MailboxThread(thread_id=thread_id, messages=messages))

        logger.info("imap_threads_found", query=query, count=len(threads), matched_messages=len(uids))
        return threads

    def thread_labels(self, thread_id: str) -> Set[str]:
        """Current labels across every message of the thread."""
        labels: Set[str] = set()
        for _, message_labels in self._fetch_attributes(self._thread_uids(thread_id)).values():
            labels |= message_labels
        return labels

    def mark_read(self, message: MailboxMessage) -> None:
        mail = self._ensure_connected()
        status, _ = mail.uid("STORE", str(message.uid), "+FLAGS", "(\\Seen)")
        if status != "OK":
            raise MailboxError(f"Cannot mark uid {message.uid} read")

    def add_label(self, thread: MailboxThread, name: str) -> None:
        """Apply *name* to every message of the thread, which labels the conversation."""
        mail = self._ensure_connected()
        uids = self._thread_uids(thread.thread_id) or [m.uid for m in thread.messages]
        if not uids:
            return
        status, _ = mail.uid("STORE", _uid_set(uids), "+X-GM-LABELS", f"({quote_imap(name)})")
        if status != "OK":
            raise MailboxError(f"Cannot add label {name!r} to thread {thread.thread_id}")
