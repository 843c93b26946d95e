"""Quick structural survey of a feed file, used by the ``inspect`` command."""

from __future__ import annotations

from collections import Counter
from pathlib import Path

from lxml import etree

from estate_import.common.config_loader import DecoderConfig
from estate_import.common.constants import RECORD_ELEMENT_CANDIDATES
from estate_import.common.errors import MalformedXml
from estate_import.pipeline.decoder import assemble_record, local_name


def analyze_structure(
    path: Path,
    candidates: tuple[str, ...] = RECORD_ELEMENT_CANDIDATES,
    max_elements: int = 5000,
    decoder_config=None,
) -> dict:
    """Stream the head of ``path`` and summarise what it contains.

    Returns element counts keyed by ``depth:name`` (in first-seen order), the
    record element the decoder would lock onto, and the decoded fields of the
    first record.
    """
    if decoder_config is None:
        decoder_config = DecoderConfig(record_candidates=tuple(candidates))

    candidate_set = set(candidates)
    counts: Counter[str] = Counter()
    order: list[str] = []
    record_element: str | None = None
    sample: dict | None = None
    depth = 0
    scanned = 0
    complete = True

    try:
        for event, elem in etree.iterparse(
            str(path),
            events=("start", "end"),
            resolve_entities=False,
            no_network=True,
            huge_tree=True,
            remove_comments=True,
            remove_pis=True,
        ):
            if not isinstance(elem.tag, str):
                continue
            name = local_name(elem)
            if event == "start":
                depth += 1
                scanned += 1
                key = f"{depth}:{name}"
                if key not in counts:
                    order.append(key)
                counts[key] += 1
                if record_element is None and depth > 1 and name in candidate_set:
                    record_element = name
                if scanned >= max_elements:
                    complete = False
                    break
                continue

            if sample is None and name == record_element:
                raw = assemble_record(elem, decoder_config)
                sample = {
                    "scalar_fields": dict(sorted(raw.scalar_fields.items())),
                    "flags": {str(k): v for k, v in sorted(raw.flags.items())},
                    "metrics": {str(k): v for k, v in sorted(raw.metrics.items())},
                    "attachments": [attachment.to_dict() for attachment in raw.attachments],
                }
            depth -= 1
            if record_element is None or depth < 2 or sample is not None:
                elem.clear(keep_tail=False)
    except etree.XMLSyntaxError as exc:
        raise MalformedXml(f"Malformed XML in {Path(path).name}: {exc}", position=getattr(exc, "position", None)) from exc

    return {
        "path": str(path),
        "elements_scanned": scanned,
        "complete": complete,
        "record_element": record_element,
        "elements": [{"depth": int(key.split(":", 1)[0]), "name": key.split(":", 1)[1], "count": counts[key]} for key in order],
        "sample_record": sample,
    }
