"""
IMAP connection and connection pool management.

Provides a thin wrapper over imaplib for the operations the reader needs
and a fixed-size, thread-safe pool of pre-opened connections.
"""

import email
import imaplib
import queue
import re
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from typing import Callable, Iterator, List, Optional, Sequence

from .config import Credentials, validate_positive


_UID_RE = re.compile(rb"UID (\d+)")


class IMAPOperationError(Exception):
    """Raised when the server answers a command with a non-OK status."""


class PoolError(Exception):
    """Raised when the connection pool is used incorrectly."""


@dataclass
class Message:
    """A fetched message, reduced to what the reader displays and flags."""

    uid: int
    subject: str
    from_address: str = ""


def decode_subject(raw: Optional[str]) -> str:
    """Decode an RFC 2047 encoded header into plain text."""
    if not raw:
        return ""
    try:
        return str(make_header(decode_header(raw))).strip()
    except (HeaderParseError, LookupError, UnicodeDecodeError):
        return raw.strip()


class IMAPConnection:
    """One authenticated IMAP session."""

    def __init__(self, client: imaplib.IMAP4):
        self.client = client
        self.mailbox: Optional[str] = None

    @classmethod
    def open(cls, host: str, port: int, username: str, password: str, timeout: float = 30) -> "IMAPConnection":
        """Open an SSL connection and log in.

        Args:
            host: IMAP server hostname
            port: IMAP server port
            username: IMAP username
            password: IMAP password
            timeout: Socket timeout in seconds

        Returns:
            Logged in connection
        """
        client = imaplib.IMAP4_SSL(host, port, timeout=timeout)
        try:
            client.login(username, password)
        except Exception:
            client.shutdown()
            raise
        return cls(client)

    def _check(self, typ: str, data, command: str) -> None:
        if typ != "OK":
            detail = data[0].decode(errors="replace") if data and isinstance(data[0], bytes) else data
            raise IMAPOperationError(f"{command} failed: {typ} {detail}")

    def select_mailbox(self, mailbox: str) -> None:
        """Select a mailbox with write access."""
        typ, data = self.client.select(mailbox)
        self._check(typ, data, f"SELECT {mailbox}")
        self.mailbox = mailbox

    def list_unseen_uids(self, criteria: str = "UNSEEN") -> List[int]:
        """Search the selected mailbox.

        Args:
            criteria: IMAP search criteria

        Returns:
            Matching UIDs in server order
        """
        typ, data = self.client.uid("SEARCH", None, criteria)
        self._check(typ, data, f"UID SEARCH {criteria}")
        if not data or data[0] is None:
            return []
        return [int(uid) for uid in data[0].split()]

    def fetch(self, uids: Sequence[int]) -> List[Message]:
        """Fetch From and Subject headers for many UIDs in one command.

        Uses BODY.PEEK so that fetching does not set the Seen flag.

        Args:
            uids: UIDs to fetch

        Returns:
            Messages the server returned; UIDs that no longer exist are absent
        """
        if not uids:
            return []
        uid_set = ",".join(str(uid) for uid in uids)
        typ, data = self.client.uid("FETCH", uid_set, "(UID BODY.PEEK[HEADER.FIELDS (FROM SUBJECT)])")
        self._check(typ, data, "UID FETCH")

        messages = []
        for index, item in enumerate(data):
            if not isinstance(item, tuple) or len(item) < 2:
                continue
            match = _UID_RE.search(item[0])
            # UID may follow the header literal, e.g. b" UID 5)"
            if not match and index + 1 < len(data) and isinstance(data[index + 1], bytes):
                match = _UID_RE.search(data[index + 1])
            if not match:
                continue
            headers = email.message_from_bytes(item[1])
            messages.append(Message(
                uid=int(match.group(1)),
                subject=decode_subject(headers.get("Subject", "")),
                from_address=headers.get("From", ""),
            ))
        return messages

    def mark_seen(self, uid: int) -> None:
        """Set the Seen flag on a message."""
        typ, data = self.client.uid("STORE", str(uid), "+FLAGS", r"(\Seen)")
        self._check(typ, data, f"UID STORE {uid}")

    def close(self) -> None:
        """Close the selected mailbox and log out, ignoring transport errors."""
        try:
            if self.mailbox is not None:
                self.client.close()
        except (imaplib.IMAP4.error, OSError):
            pass
        try:
            self.client.logout()
        except (imaplib.IMAP4.error, OSError):
            pass
        self.mailbox = None


def connection_factory(credentials: Credentials, timeout: float = 30, retry_count: int = 3,
                       verbose: bool = True) -> Callable[[], IMAPConnection]:
    """Build a callable that opens one logged in connection.

    Transport errors are retried up to ``retry_count`` attempts in total;
    authentication errors are raised immediately.

    Args:
        credentials: Server address and login
        timeout: Socket timeout in seconds
        retry_count: Maximum number of connect attempts
        verbose: Whether to print retry notices

    Returns:
        Zero-argument connection factory
    """
    retry_count = validate_positive("retry_count", retry_count)

    def open_connection() -> IMAPConnection:
        attempt = 1
        while True:
            try:
                return IMAPConnection.open(
                    credentials.server,
                    credentials.port,
                    credentials.username,
                    credentials.password,
                    timeout=timeout,
                )
            except (imaplib.IMAP4.abort, OSError) as e:
                if attempt >= retry_count:
                    raise
                if verbose:
                    print(f"[!] Connect attempt {attempt} failed: {e}, retrying")
                attempt += 1

    return open_connection


class IMAPConnectionPool:
    """Thread-safe, fixed-size IMAP connection pool.

    All connections are opened up front; the pool never grows. Borrowing
    blocks until a connection is idle.
    """

    def __init__(self, size: int, factory: Callable[[], IMAPConnection], mailbox: str = "INBOX",
                 verbose: bool = True):
        """Open ``size`` connections and select ``mailbox`` on each.

        Args:
            size: Number of pooled connections
            factory: Callable that opens one logged in connection
            mailbox: Mailbox selected on every connection
            verbose: Whether to print verbose output

        Raises:
            InvalidConfiguration: If size is not a positive integer
            Exception: The first error raised while opening a connection
        """
        self.size = validate_positive("pool_size", size)
        self.mailbox = mailbox
        self.verbose = verbose
        self._idle: "queue.Queue[IMAPConnection]" = queue.Queue(maxsize=self.size)
        self._borrowed = set()
        self._lock = threading.Lock()
        self._closed = False

        self._connections = self._open_all(factory)
        for conn in self._connections:
            self._idle.put_nowait(conn)

        if self.verbose:
            print(f"[i] Opened {self.size} IMAP connections on {mailbox}")

    def _open_one(self, factory: Callable[[], IMAPConnection]) -> IMAPConnection:
        conn = factory()
        try:
            conn.select_mailbox(self.mailbox)
        except Exception:
            conn.close()
            raise
        return conn

    def _open_all(self, factory: Callable[[], IMAPConnection]) -> List[IMAPConnection]:
        """Open every connection concurrently, closing all of them if any fails."""
        opened = []
        errors = []

        with ThreadPoolExecutor(max_workers=self.size) as executor:
            futures = [executor.submit(self._open_one, factory) for _ in range(self.size)]
            for future in as_completed(futures):
                try:
                    opened.append(future.result())
                except Exception as e:
                    errors.append(e)

        if errors:
            for conn in opened:
                conn.close()
            if self.verbose and len(errors) > 1:
                print(f"[!] {len(errors)} of {self.size} connections failed to open")
            raise errors[0]

        return opened

    @property
    def idle_count(self) -> int:
        """Number of connections waiting in the pool."""
        return self._idle.qsize()

    @property
    def outstanding(self) -> int:
        """Number of connections currently borrowed."""
        with self._lock:
            return len(self._borrowed)

    def get_connection(self) -> IMAPConnection:
        """Borrow a connection, blocking until one is idle.

        Returns:
            Connection owned exclusively by the caller until returned
        """
        if self._closed:
            raise PoolError("Connection pool is closed")
        conn = self._idle.get()
        with self._lock:
            self._borrowed.add(id(conn))
        return conn

    def return_connection(self, conn: IMAPConnection) -> None:
        """Return a borrowed connection to the pool.

        The connection goes back in whatever state it is in.

        Args:
            conn: Connection previously obtained from get_connection
        """
        with self._lock:
            if id(conn) not in self._borrowed:
                raise PoolError("Connection was not borrowed from this pool")
            self._borrowed.discard(id(conn))
            if self._closed:
                conn.close()
                raise PoolError("Connection returned after pool shutdown")
            self._idle.put_nowait(conn)

    @contextmanager
    def connection(self) -> Iterator[IMAPConnection]:
        """Borrow a connection for the duration of a with block."""
        conn = self.get_connection()
        try:
            yield conn
        except BaseException:
            try:
                self.return_connection(conn)
            except PoolError as e:
                print(f"[!] {e}")
            raise
        self.return_connection(conn)

    def close_all(self) -> None:
        """Close every idle connection and refuse further borrowing."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            still_borrowed = len(self._borrowed)

        closed = 0
        while True:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                break
            conn.close()
            closed += 1

        if self.verbose:
            print(f"[i] Closed {closed} IMAP connections")
        if still_borrowed:
            print(f"[!] {still_borrowed} connections were still borrowed at shutdown")

    def __enter__(self) -> "IMAPConnectionPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close_all()
