from pathlib import Path

import pytest

from estate_import.common.config_loader import load_import_config
from estate_import.common.errors import ConfigError
from estate_import.common.models import DuplicatePolicy, PropertyCategory


MINIMAL_IMPORT_YML = """source:
  base_url: https://feed.example.test/export
  filename: feed.tar.gz
decoder:
  record_candidates: [annuncio]
transform:
  fields:
    external_id: [id]
    title: [titolo]
    price_sale: [prezzo_vendita]
    price_rent: [prezzo_affitto]
    category_code: [categorie_id]
  categories:
    11: apartment
reconcile:
  batch_size: 10
  duplicate_policy: update
store:
  state_path: state/destination.json
"""


def test_load_import_config_from_repo_config_dir():
    config = load_import_config(Path("config"))
    assert config.source.url.endswith("/export_gestionale.tar.gz")
    assert config.source.freshness_hours == 12
    assert config.source.max_retries == 3
    assert config.decoder.record_candidates[0] == "annuncio"
    assert config.decoder.max_records == 50_000
    assert config.decoder.flags.container == "info_inserite"
    assert config.decoder.attachments.url == ("file_path", "url")
    assert config.transform.categories[11] is PropertyCategory.APARTMENT
    assert config.transform.categories[19] is PropertyCategory.LAND
    assert config.transform.flag_features[13] == "elevator"
    assert config.transform.metrics[21] == "useful_sqm"
    assert config.transform.allowed_regions == frozenset({"TN", "BZ"})
    assert config.transform.region_aliases["BZ"] == ("Bolzano", "Bozen")
    assert config.reconcile.batch_size == 50
    assert config.reconcile.duplicate_policy is DuplicatePolicy.UPDATE


def test_minimal_config_falls_back_to_defaults(tmp_path: Path):
    (tmp_path / "import.yml").write_text(MINIMAL_IMPORT_YML, encoding="utf-8")
    config = load_import_config(tmp_path)

    assert config.decoder.detection_lookahead == 2000
    assert config.decoder.scalar_containers == ("info",)
    assert config.decoder.metrics.container == "dati_inseriti"
    assert config.transform.allowed_regions == frozenset()
    assert config.transform.fallback_category is PropertyCategory.PROPERTY
    assert config.log_level == "INFO"


def test_overlay_values_win(tmp_path: Path):
    base = tmp_path / "base"
    overlay = tmp_path / "overlay"
    base.mkdir()
    overlay.mkdir()
    (base / "import.yml").write_text(MINIMAL_IMPORT_YML, encoding="utf-8")
    (overlay / "import.yml").write_text(
        """reconcile:
  duplicate_policy: skip
source:
  freshness_hours: 1
""",
        encoding="utf-8",
    )

    config = load_import_config(base, overlay_config_dir=overlay)

    assert config.reconcile.duplicate_policy is DuplicatePolicy.SKIP
    assert config.reconcile.batch_size == 10
    assert config.source.freshness_hours == 1
    assert config.source.filename == "feed.tar.gz"


def test_empty_overlay_file_is_ignored(tmp_path: Path):
    base = tmp_path / "base"
    overlay = tmp_path / "overlay"
    base.mkdir()
    overlay.mkdir()
    (base / "import.yml").write_text(MINIMAL_IMPORT_YML, encoding="utf-8")
    (overlay / "import.yml").write_text("", encoding="utf-8")

    config = load_import_config(base, overlay_config_dir=overlay)
    assert config.reconcile.duplicate_policy is DuplicatePolicy.UPDATE


def test_non_mapping_overlay_is_rejected(tmp_path: Path):
    base = tmp_path / "base"
    overlay = tmp_path / "overlay"
    base.mkdir()
    overlay.mkdir()
    (base / "import.yml").write_text(MINIMAL_IMPORT_YML, encoding="utf-8")
    (overlay / "import.yml").write_text("- not\n- a\n- mapping\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_import_config(base, overlay_config_dir=overlay)


def test_missing_config_file_raises(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_import_config(tmp_path)


def test_unknown_category_value_raises(tmp_path: Path):
    (tmp_path / "import.yml").write_text(MINIMAL_IMPORT_YML.replace("11: apartment", "11: castle"), encoding="utf-8")
    with pytest.raises(ConfigError):
        load_import_config(tmp_path)


def test_non_integer_category_key_raises(tmp_path: Path):
    (tmp_path / "import.yml").write_text(MINIMAL_IMPORT_YML.replace("11: apartment", "eleven: apartment"), encoding="utf-8")
    with pytest.raises(ConfigError):
        load_import_config(tmp_path)
