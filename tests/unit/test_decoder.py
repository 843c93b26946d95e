from dataclasses import replace
from pathlib import Path

import pytest

from estate_import.common.config_loader import DecoderConfig
from estate_import.common.errors import DecodeError, MalformedXml, NoRecordElementFound
from estate_import.common.models import Attachment
from estate_import.pipeline.decoder import DecodeStrategy, StreamingDecoder, select_strategy

FEEDS = Path("tests/fixtures/feeds")


def _decode(path: Path, strategy=DecodeStrategy.STREAMING, config: DecoderConfig | None = None):
    session = StreamingDecoder(config or DecoderConfig()).decode(path, strategy=strategy)
    return session, list(session)


@pytest.mark.parametrize("strategy", [DecodeStrategy.STREAMING, DecodeStrategy.IN_MEMORY])
def test_decodes_nested_annuncio_feed(strategy):
    session, records = _decode(FEEDS / "annunci.xml", strategy)

    assert session.record_element == "annuncio"
    assert session.records_decoded == 4
    assert session.truncated is False
    assert [r.scalar_fields.get("id") for r in records] == ["1001", "1002", "1003", None]

    first = records[0]
    assert first.scalar_fields["prezzo_vendita"] == "250.000 €"
    assert first.scalar_fields["descrizione"] == "Ampio trilocale\ncon vista sul Duomo."
    assert first.flags == {1: 2, 2: 3, 13: 1, 17: 0}
    assert first.metrics == {20: 102.5, 21: 88}
    assert first.attachments == [
        Attachment(id="7", type="foto", url="https://img.example.com/1001/1.jpg"),
        Attachment(id="8", type="planimetria", url="https://img.example.com/1001/plan.pdf"),
    ]
    # Header fields never leak into records.
    assert "agenzia" not in first.scalar_fields


def test_dynamic_record_element_item_with_namespace():
    session, records = _decode(FEEDS / "items.xml")

    assert session.record_element == "item"
    assert len(records) == 2
    assert records[0].scalar_fields["id"] == "3001"
    assert records[1].scalar_fields["comune"] == "Trento (TN)"


def test_renamed_record_element_yields_same_shape(tmp_path: Path):
    original = (FEEDS / "annunci.xml").read_text(encoding="utf-8")
    renamed = tmp_path / "renamed.xml"
    renamed.write_text(original.replace("<annuncio>", "<item>").replace("</annuncio>", "</item>"), encoding="utf-8")

    _, expected = _decode(FEEDS / "annunci.xml")
    session, records = _decode(renamed)

    assert session.record_element == "item"
    assert records == expected


def test_document_root_is_never_the_record_element(tmp_path: Path):
    path = tmp_path / "root.xml"
    path.write_text("<listing><record><id>1</id></record><record><id>2</id></record></listing>", encoding="utf-8")

    session, records = _decode(path)

    assert session.record_element == "record"
    assert [r.scalar_fields["id"] for r in records] == ["1", "2"]


def test_no_record_element_at_end_of_document():
    with pytest.raises(NoRecordElementFound):
        _decode(FEEDS / "no_records.xml")


def test_no_record_element_within_lookahead(tmp_path: Path):
    path = tmp_path / "late.xml"
    filler = "".join(f"<voce>{i}</voce>" for i in range(50))
    path.write_text(f"<root>{filler}<annuncio><id>1</id></annuncio></root>", encoding="utf-8")
    config = replace(DecoderConfig(), detection_lookahead=20)

    with pytest.raises(NoRecordElementFound):
        _decode(path, config=config)


def test_record_cap_truncates_and_flags_session():
    config = replace(DecoderConfig(), max_records=2)
    session, records = _decode(FEEDS / "annunci.xml", config=config)

    assert len(records) == 2
    assert session.records_decoded == 2
    assert session.truncated is True


def test_cap_equal_to_record_count_is_not_truncation():
    config = replace(DecoderConfig(), max_records=4)
    session, records = _decode(FEEDS / "annunci.xml", config=config)

    assert len(records) == 4
    assert session.truncated is False


def test_malformed_in_memory_raises_with_position():
    with pytest.raises(MalformedXml) as excinfo:
        _decode(FEEDS / "malformed.xml", DecodeStrategy.IN_MEMORY)

    assert excinfo.value.position is not None
    assert excinfo.value.position[0] >= 20
    assert excinfo.value.error_code == "DECODE_MALFORMED"


def test_malformed_streaming_keeps_records_yielded_before_error(tmp_path: Path):
    body = "".join(
        f"<annuncio><info><id>{i}</id><titolo>Annuncio numero {i}</titolo>"
        f"<prezzo_vendita>{100000 + i}</prezzo_vendita><categorie_id>11</categorie_id></info></annuncio>\n"
        for i in range(1500)
    )
    path = tmp_path / "broken.xml"
    path.write_text(f"<dataset>{body}<annuncio><info><id>x</id></inf></annuncio></dataset>", encoding="utf-8")

    session = StreamingDecoder(DecoderConfig()).decode(path, strategy=DecodeStrategy.STREAMING)
    received = []
    with pytest.raises(MalformedXml):
        for raw in session:
            received.append(raw.scalar_fields["id"])

    assert received
    assert received[0] == "0"
    assert session.records_decoded == len(received)


def test_missing_payload_file_is_decode_error(tmp_path: Path):
    with pytest.raises(DecodeError):
        StreamingDecoder(DecoderConfig()).decode(tmp_path / "absent.xml")


def test_select_strategy_by_size(tmp_path: Path):
    path = tmp_path / "feed.xml"
    path.write_bytes(b"x" * 100)
    assert select_strategy(path, threshold_bytes=100) is DecodeStrategy.STREAMING
    assert select_strategy(path, threshold_bytes=101) is DecodeStrategy.IN_MEMORY


def test_decode_picks_strategy_from_threshold():
    small = StreamingDecoder(DecoderConfig()).decode(FEEDS / "two_records.xml")
    forced = StreamingDecoder(replace(DecoderConfig(), streaming_threshold_bytes=1)).decode(FEEDS / "two_records.xml")

    assert small.strategy is DecodeStrategy.IN_MEMORY
    assert forced.strategy is DecodeStrategy.STREAMING
    assert len(list(small)) == len(list(forced)) == 2


def test_session_is_single_use():
    session = StreamingDecoder(DecoderConfig()).decode(FEEDS / "two_records.xml")
    assert len(list(session)) == 2
    assert list(session) == []
