"""Streaming decode of the listing feed into RawRecord values.

The record element is not fixed: the first start tag (below the document
root) whose local name is one of ``DecoderConfig.record_candidates`` is
locked in as the record boundary for the rest of the document.

Inside a record, leaf children of the record (and of the configured scalar
containers, e.g. ``<info>``) become scalar fields. The flag, metric and
attachment collections are picked up by container name at any depth.
Anything else nested is ignored.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Iterator

from lxml import etree

from estate_import.common.coerce import parse_bool, parse_int, parse_number
from estate_import.common.errors import DecodeError, MalformedXml, NoRecordElementFound
from estate_import.common.logging import log_event, null_logger
from estate_import.common.models import Attachment, RawRecord


class DecodeStrategy(str, Enum):
    STREAMING = "streaming"
    IN_MEMORY = "in_memory"


def select_strategy(path: Path, threshold_bytes: int) -> DecodeStrategy:
    """Files at or above the threshold are streamed; smaller ones are parsed whole."""
    if Path(path).stat().st_size >= threshold_bytes:
        return DecodeStrategy.STREAMING
    return DecodeStrategy.IN_MEMORY


def local_name(elem) -> str:
    return etree.QName(elem).localname


def _text(elem) -> str:
    return (elem.text or "").strip()


def _child_text(elem, names: tuple[str, ...]) -> str | None:
    for child in elem:
        if isinstance(child.tag, str) and local_name(child) in names:
            value = _text(child)
            if value:
                return value
    return None


def _flag_value(text: str | None) -> int | None:
    if text is None:
        return None
    value = parse_int(text)
    if value is not None:
        return value
    flag = parse_bool(text)
    if flag is None:
        return None
    return int(flag)


def _put_scalar(raw: RawRecord, elem) -> None:
    value = _text(elem)
    name = local_name(elem)
    if value and name not in raw.scalar_fields:
        raw.scalar_fields[name] = value


def assemble_record(record_elem, config) -> RawRecord:
    """Build a RawRecord from a fully parsed record element."""
    raw = RawRecord()
    containers = {
        config.flags.container,
        config.metrics.container,
        config.attachments.container,
    }

    for child in record_elem:
        if not isinstance(child.tag, str):
            continue
        name = local_name(child)
        if name in containers:
            continue
        if len(child) == 0:
            _put_scalar(raw, child)
        elif name in config.scalar_containers:
            for leaf in child:
                if isinstance(leaf.tag, str) and len(leaf) == 0:
                    _put_scalar(raw, leaf)

    for elem in record_elem.iter():
        if elem is record_elem or not isinstance(elem.tag, str):
            continue
        name = local_name(elem)
        if name == config.flags.container:
            _read_flags(elem, config.flags, raw.flags)
        elif name == config.metrics.container:
            _read_metrics(elem, config.metrics, raw.metrics)
        elif name == config.attachments.container:
            _read_attachments(elem, config.attachments, raw.attachments)
    return raw


def _items(container, item_name: str):
    for item in container:
        if isinstance(item.tag, str) and local_name(item) == item_name:
            yield item


def _read_flags(container, spec, out: dict[int, int]) -> None:
    for item in _items(container, spec.item):
        flag_id = parse_int(item.get("id"))
        value = _flag_value(_child_text(item, (spec.value,)))
        if flag_id is None or value is None:
            continue
        out[flag_id] = value


def _read_metrics(container, spec, out: dict) -> None:
    for item in _items(container, spec.item):
        metric_id = parse_int(item.get("id"))
        value = parse_number(_child_text(item, (spec.value,)))
        if metric_id is None or value is None:
            continue
        out[metric_id] = value


def _read_attachments(container, spec, out: list[Attachment]) -> None:
    for item in _items(container, spec.item):
        url = _child_text(item, spec.url)
        if url is None:
            continue
        out.append(Attachment(id=item.get("id"), type=item.get("type"), url=url))


def _release(elem) -> None:
    elem.clear(keep_tail=False)
    parent = elem.getparent()
    if parent is None:
        return
    while elem.getprevious() is not None:
        del parent[0]


class DecodeSession:
    """Single-use iterator of RawRecord for one file.

    ``record_element``, ``records_decoded`` and ``truncated`` are updated as
    the iteration advances and are final once it is exhausted.
    """

    def __init__(self, path: Path, config, strategy: DecodeStrategy, logger: logging.Logger) -> None:
        self.path = Path(path)
        self.config = config
        self.strategy = strategy
        self.logger = logger
        self.record_element: str | None = None
        self.records_decoded = 0
        self.truncated = False
        self._records = self._decode()

    def __iter__(self) -> "DecodeSession":
        return self

    def __next__(self) -> RawRecord:
        return next(self._records)

    def close(self) -> None:
        self._records.close()

    def _events(self):
        if self.strategy is DecodeStrategy.STREAMING:
            return etree.iterparse(
                str(self.path),
                events=("start", "end"),
                resolve_entities=False,
                no_network=True,
                huge_tree=True,
                remove_comments=True,
                remove_pis=True,
            )
        parser = etree.XMLParser(
            resolve_entities=False,
            no_network=True,
            huge_tree=True,
            remove_comments=True,
            remove_pis=True,
        )
        tree = etree.parse(str(self.path), parser)
        return etree.iterwalk(tree, events=("start", "end"))

    def _lock(self, name: str) -> None:
        self.record_element = name
        log_event(
            self.logger,
            f"Record element detected: <{name}>",
            stage="decode",
            event="RECORD_ELEMENT_LOCKED",
            status="ok",
            record_element=name,
            strategy=self.strategy.value,
        )

    def _decode(self) -> Iterator[RawRecord]:
        try:
            yield from self._walk()
        except etree.XMLSyntaxError as exc:
            position = getattr(exc, "position", None)
            raise MalformedXml(f"Malformed XML in {self.path.name}: {exc}", position=position) from exc
        except OSError as exc:
            raise DecodeError(f"Cannot read {self.path}: {exc}") from exc

    def _walk(self) -> Iterator[RawRecord]:
        candidates = set(self.config.record_candidates)
        streaming = self.strategy is DecodeStrategy.STREAMING
        depth = 0
        record_depth: int | None = None
        unmatched = 0

        for event, elem in self._events():
            if not isinstance(elem.tag, str):
                continue

            if event == "start":
                depth += 1
                if record_depth is not None:
                    continue
                name = local_name(elem)
                if self.record_element is None:
                    # The document root is never the repeating element.
                    if depth > 1 and name in candidates:
                        self._lock(name)
                    else:
                        unmatched += 1
                        if unmatched >= self.config.detection_lookahead:
                            raise NoRecordElementFound(
                                f"No record element among {sorted(candidates)} in the first "
                                f"{unmatched} elements of {self.path.name}"
                            )
                        continue
                if name != self.record_element:
                    continue
                if self.records_decoded >= self.config.max_records:
                    self.truncated = True
                    log_event(
                        self.logger,
                        f"Record cap {self.config.max_records} reached; remaining records ignored",
                        level=logging.WARNING,
                        stage="decode",
                        event="DECODE_TRUNCATED",
                        status="truncated",
                        records_out=self.records_decoded,
                    )
                    return
                record_depth = depth
                continue

            if record_depth is not None and depth == record_depth:
                raw = assemble_record(elem, self.config)
                self.records_decoded += 1
                record_depth = None
                depth -= 1
                if streaming:
                    _release(elem)
                yield raw
                continue

            if record_depth is None and streaming:
                _release(elem)
            depth -= 1

        if self.record_element is None:
            raise NoRecordElementFound(
                f"No record element among {sorted(candidates)} found in {self.path.name}"
            )


class StreamingDecoder:
    def __init__(self, decoder_config, logger: logging.Logger | None = None) -> None:
        self.config = decoder_config
        self.logger = logger or null_logger()

    def decode(self, path: Path, strategy: DecodeStrategy | None = None) -> DecodeSession:
        path = Path(path)
        if not path.exists():
            raise DecodeError(f"Payload file not found: {path}")
        if strategy is None:
            strategy = select_strategy(path, self.config.streaming_threshold_bytes)
        return DecodeSession(path, self.config, strategy, self.logger)
