from __future__ import annotations

import json
import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

import pyarrow as pa
import pyarrow.parquet as pq

from .models import DomainRecord

logger = logging.getLogger(__name__)

RECORD_SCHEMA = pa.schema(
    [
        pa.field("domain", pa.string(), nullable=False),
        pa.field("has_dns", pa.bool_(), nullable=False),
        pa.field("dns_ips", pa.list_(pa.string()), nullable=True),
        pa.field("http_ok", pa.bool_(), nullable=False),
        pa.field("final_url", pa.string(), nullable=True),
        pa.field("status_code", pa.int64(), nullable=True),
        pa.field("used_https", pa.bool_(), nullable=False),
        pa.field("text_ok", pa.bool_(), nullable=False),
        pa.field("homepage_text", pa.string(), nullable=True),
        pa.field("stage", pa.string(), nullable=False),
    ]
)


class StorageError(Exception):
    """The output batch could not be written."""


class StorageBase(ABC):
    """Abstract base class for all result sinks.

    Records arrive in input order and must be persisted in that order.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._count = 0

    @abstractmethod
    def write(self, record: DomainRecord) -> None:
        """Accept a single domain record."""

    @abstractmethod
    def close(self) -> None:
        """Flush pending records and release resources."""

    @property
    def path(self) -> str:
        return self._path

    @property
    def count(self) -> int:
        return self._count


class ParquetStorage(StorageBase):
    """Buffers every record and writes one compressed Parquet file on close()."""

    def __init__(self, path: str, compression: str = "zstd") -> None:
        super().__init__(path)
        self._compression = compression
        self._records: List[DomainRecord] = []

    def write(self, record: DomainRecord) -> None:
        self._records.append(record)
        self._count += 1

    def close(self) -> None:
        table = pa.Table.from_pylist([r.to_row() for r in self._records], schema=RECORD_SCHEMA)
        try:
            pq.write_table(table, self._path, compression=self._compression)
        except (OSError, pa.ArrowException) as exc:
            raise StorageError(f"Failed to write {self._path}: {exc}") from exc
        logger.debug("wrote %d records to %s", table.num_rows, self._path)


class JsonlStorage(StorageBase):
    """Streams records as JSON Lines (.jsonl) using a background writer thread."""

    def __init__(self, path: str) -> None:
        super().__init__(path)
        try:
            self._file = open(path, "w", encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to open {path}: {exc}") from exc
        self._error: Optional[BaseException] = None
        self._queue: queue.Queue[Optional[DomainRecord]] = queue.Queue()
        self._thread = threading.Thread(target=self._writer, daemon=True)
        self._thread.start()

    def write(self, record: DomainRecord) -> None:
        """Enqueue a record for background writing."""
        self._queue.put(record)
        self._count += 1

    def close(self) -> None:
        """Signal the writer thread to flush and stop."""
        self._queue.put(None)
        self._thread.join()
        if self._error is not None:
            raise StorageError(f"Failed to write {self._path}: {self._error}") from self._error

    def _writer(self) -> None:
        with self._file as f:
            while True:
                item = self._queue.get()
                if item is None:
                    break
                if self._error is not None:
                    continue
                try:
                    f.write(json.dumps(item.to_row(), ensure_ascii=False) + "\n")
                except OSError as exc:
                    self._error = exc


def build_storage(path: str, output_format: str) -> StorageBase:
    if output_format == "parquet":
        return ParquetStorage(path)
    if output_format == "jsonl":
        return JsonlStorage(path)
    raise ValueError(f"Unknown output format: {output_format}")
