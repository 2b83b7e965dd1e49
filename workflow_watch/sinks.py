"""Emission sinks for changed-workflow notifications.

A sink receives one batch per cycle that found changes. It is never called
with an empty batch. A sink that cannot deliver raises EmissionError; the
trigger then leaves the watermarks untouched so the batch is retried next
cycle.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TextIO, Union

import httpx

from workflow_watch.errors import EmissionError

logger = logging.getLogger(__name__)

__all__ = [
    "CallbackSink",
    "EmissionSink",
    "JsonLinesFileSink",
    "StreamSink",
    "WebhookSink",
    "build_sink",
]

Record = Mapping[str, Any]


class EmissionSink:
    """Receives batches of output records."""

    def emit(self, records: Sequence[Record]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


class StreamSink(EmissionSink):
    """Writes one JSON document per record to a text stream."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream

    def emit(self, records: Sequence[Record]) -> None:
        stream = self.stream or sys.stdout
        for record in records:
            stream.write(json.dumps(record, default=str) + "\n")
        stream.flush()


class JsonLinesFileSink(EmissionSink):
    """Appends records to a JSON lines file."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def emit(self, records: Sequence[Record]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                for record in records:
                    fh.write(json.dumps(record, default=str) + "\n")
        except OSError as exc:
            raise EmissionError(f"Could not append to {self.path}", cause=exc) from exc
        logger.debug("Appended %d records to %s", len(records), self.path)


class WebhookSink(EmissionSink):
    """POSTs each batch as ``{"items": [...]}`` to a URL."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url = url
        self._client = httpx.Client(
            timeout=timeout,
            headers={"Content-Type": "application/json", **(headers or {})},
            transport=transport,
        )

    def emit(self, records: Sequence[Record]) -> None:
        body = json.dumps({"items": list(records)}, default=str)
        try:
            response = self._client.post(self.url, content=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EmissionError(f"Webhook POST to {self.url} failed", cause=exc) from exc
        logger.debug("Webhook POST succeeded for %s (%d records)", self.url, len(records))

    def close(self) -> None:
        self._client.close()


class CallbackSink(EmissionSink):
    """Hands each batch to a callable."""

    def __init__(self, callback: Callable[[List[Record]], Any]) -> None:
        self.callback = callback

    def emit(self, records: Sequence[Record]) -> None:
        self.callback(list(records))


def build_sink(spec: Optional[str]) -> EmissionSink:
    """Create a sink from a CLI-style spec.

    ``-``/``stdout`` (or nothing) writes to stdout, ``http(s)://...`` posts
    to a webhook, anything else is a JSON lines file path.
    """
    spec = (spec or "").strip()
    if not spec or spec in ("-", "stdout"):
        return StreamSink()
    if spec.startswith(("http://", "https://")):
        return WebhookSink(spec)
    return JsonLinesFileSink(spec)
