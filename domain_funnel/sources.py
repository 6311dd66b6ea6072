from __future__ import annotations

import logging
from typing import Iterable, List, Optional

import pyarrow as pa
import pyarrow.parquet as pq

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """The input batch could not be read."""


def load_domains(path: str, limit: Optional[int] = None) -> List[str]:
    """Read the whole input batch into memory.

    ``.parquet`` files must carry a ``domain`` column; anything else is read
    as a text list with one domain per line (blank lines and ``#`` comments
    skipped). Rows without a domain are dropped.
    """
    if path.endswith(".parquet"):
        raw = _read_parquet_column(path)
    else:
        raw = _read_text_lines(path)

    domains: List[str] = []
    skipped = 0
    for value in raw:
        domain = value.strip() if isinstance(value, str) else ""
        if not domain:
            skipped += 1
            continue
        domains.append(domain)
        if limit is not None and len(domains) >= limit:
            break
    if skipped:
        logger.info("Skipped %d rows without a domain", skipped)
    return domains


def _read_parquet_column(path: str) -> Iterable[Optional[str]]:
    try:
        schema = pq.read_schema(path)
        if "domain" not in schema.names:
            raise SourceError(f"No 'domain' column in {path}")
        column_type = schema.field("domain").type
        if not _is_text_type(column_type):
            raise SourceError(f"Column 'domain' in {path} is {column_type}, expected strings")
        table = pq.read_table(path, columns=["domain"])
    except (OSError, pa.ArrowException) as exc:
        raise SourceError(f"Failed to read {path}: {exc}") from exc
    return table.column("domain").to_pylist()


def _read_text_lines(path: str) -> Iterable[str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        raise SourceError(f"Failed to read {path}: {exc}") from exc
    return [line for line in lines if line.strip() and not line.lstrip().startswith("#")]


def _is_text_type(column_type: pa.DataType) -> bool:
    if pa.types.is_dictionary(column_type):
        column_type = column_type.value_type
    return pa.types.is_string(column_type) or pa.types.is_large_string(column_type)
