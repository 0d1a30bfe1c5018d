"""
Main email processing orchestrator.

Splits unseen UIDs into chunks and, for each chunk, fetches the messages
through one pooled connection, then marks them as seen in parallel across
the pool.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from .callbacks import ProcessingCallback
from .config import ConfigManager, Credentials, validate_positive
from .imap_manager import IMAPConnection, IMAPConnectionPool, Message, connection_factory


class Chunks:
    """Restartable view of ``ids`` as consecutive slices of ``chunk_size``.

    Every iteration starts from the first chunk. The last chunk holds the
    remainder and may be shorter.
    """

    def __init__(self, ids: Sequence[int], chunk_size: int):
        self.ids = tuple(ids)
        self.chunk_size = validate_positive("chunk_size", chunk_size)

    def __iter__(self) -> Iterator[List[int]]:
        for start in range(0, len(self.ids), self.chunk_size):
            yield list(self.ids[start:start + self.chunk_size])

    def __len__(self) -> int:
        return -(-len(self.ids) // self.chunk_size)


def chunked(ids: Sequence[int], chunk_size: int) -> Chunks:
    """Split ``ids`` into chunks of at most ``chunk_size``."""
    return Chunks(ids, chunk_size)


@dataclass
class ChunkResult:
    """Outcome of one processed chunk."""

    fetched: int = 0
    marked: List[int] = field(default_factory=list)
    failed: List[Tuple[int, Exception]] = field(default_factory=list)


@dataclass
class RunSummary:
    """Totals over a whole run."""

    total_uids: int = 0
    chunks: int = 0
    fetched: int = 0
    marked: int = 0
    failed: List[int] = field(default_factory=list)

    def add(self, result: ChunkResult) -> None:
        self.chunks += 1
        self.fetched += result.fetched
        self.marked += len(result.marked)
        self.failed.extend(uid for uid, _ in result.failed)


class EmailProcessor:
    """Reads unseen emails chunk by chunk using a connection pool."""

    def __init__(self, pool: IMAPConnectionPool, chunk_size: int = 10, verbose: bool = True,
                 callback: Optional[ProcessingCallback] = None):
        """Initialize email processor.

        Args:
            pool: Connection pool shared by the fetch and mark steps
            chunk_size: Number of UIDs per chunk
            verbose: Whether to print verbose output
            callback: Optional callback for progress updates
        """
        self.pool = pool
        self.chunk_size = validate_positive("chunk_size", chunk_size)
        self.verbose = verbose
        self.callback = callback or ProcessingCallback()

    def _mark_seen(self, message: Message) -> Optional[Exception]:
        """Mark one message as seen on a borrowed connection.

        Returns:
            The error if marking failed, None otherwise
        """
        try:
            with self.pool.connection() as conn:
                conn.mark_seen(message.uid)
        except Exception as e:
            print(f"[!] Error marking UID {message.uid} as seen: {e}")
            self.callback.on_mark_failed(message.uid, e)
            return e

        if self.verbose:
            print(f"[+] Reading email: {message.subject}")
        self.callback.on_email_read(message.uid, message.subject)
        return None

    def process_chunk(self, uid_chunk: Sequence[int]) -> ChunkResult:
        """Fetch a chunk of messages and mark each one as seen.

        Returns only after every mark task of the chunk has finished. Fetch
        errors propagate; mark errors are reported and collected.

        Args:
            uid_chunk: UIDs to process

        Returns:
            ChunkResult with fetched, marked and failed messages
        """
        result = ChunkResult()
        if not uid_chunk:
            return result

        with self.pool.connection() as conn:
            messages = conn.fetch(uid_chunk)
        result.fetched = len(messages)

        if not messages:
            if self.verbose:
                print(f"[i] No emails to read on {self.pool.mailbox}")
            return result

        if self.verbose:
            print(f"[+] Reading a chunk of {len(messages)} emails")

        # Tasks beyond the pool size block on get_connection until one frees up
        with ThreadPoolExecutor(max_workers=len(messages)) as executor:
            futures = {executor.submit(self._mark_seen, message): message for message in messages}
            for future in as_completed(futures):
                uid = futures[future].uid
                error = future.result()
                if error is None:
                    result.marked.append(uid)
                else:
                    result.failed.append((uid, error))

        return result

    def run(self, uids: Sequence[int]) -> RunSummary:
        """Process all UIDs, one chunk at a time.

        Args:
            uids: UIDs to read, in processing order

        Returns:
            RunSummary with totals over all chunks
        """
        chunks = Chunks(uids, self.chunk_size)
        summary = RunSummary(total_uids=len(chunks.ids))
        self.callback.on_start(summary.total_uids, len(chunks))

        for index, uid_chunk in enumerate(chunks, 1):
            self.callback.on_chunk_start(index, len(chunks), len(uid_chunk))
            result = self.process_chunk(uid_chunk)
            summary.add(result)
            self.callback.on_chunk_complete(index, result)

        self.callback.on_complete(summary)
        return summary


def run_reader(config_manager: ConfigManager, credentials: Credentials,
               callback: Optional[ProcessingCallback] = None,
               factory: Optional[Callable[[], IMAPConnection]] = None) -> RunSummary:
    """Open the pool, list unseen UIDs and read them all.

    Args:
        config_manager: Loaded configuration
        credentials: IMAP login
        callback: Optional callback for progress updates
        factory: Connection factory, built from credentials when omitted

    Returns:
        RunSummary for the run
    """
    settings = config_manager.get_reader_settings()
    mail_settings = config_manager.get_mail_settings()
    verbose = settings["verbose"]
    mailbox = mail_settings["mailbox"]

    if factory is None:
        factory = connection_factory(
            credentials,
            timeout=settings["timeout"],
            retry_count=settings["retry_count"],
            verbose=verbose,
        )

    if verbose:
        print(f"[+] Opening {settings['pool_size']} connections, selecting folder: {mailbox}")

    with IMAPConnectionPool(settings["pool_size"], factory, mailbox, verbose) as pool:
        if verbose:
            print(f"[+] Getting {mail_settings['search_criteria']} uids")
        with pool.connection() as conn:
            uids = conn.list_unseen_uids(mail_settings["search_criteria"])

        if verbose:
            print(f"[i] {len(uids)} unseen emails in {mailbox}")

        processor = EmailProcessor(pool, settings["chunk_size"], verbose, callback)
        return processor.run(uids)
