import json
from pathlib import Path

import pytest

from app.models.company import CompanyRecord
from pipelines.io import record_store
from pipelines.io.record_store import RecordStoreError
from tests.utils import make_record, read_rows, write_records


def test_load_record_store_preserves_unowned_keys(tmp_path: Path):
    path = write_records(
        tmp_path,
        [make_record("acme", funding=1_000, logo="/logos/acme.png", tags=["ai", "payments"])],
    )

    store = record_store.load_record_store(path)
    record = store.get("acme")

    assert len(store) == 1
    assert "acme" in store
    assert record is not None and record.funding == 1_000
    assert store.rows[0]["logo"] == "/logos/acme.png"


def test_load_record_store_missing_file_is_fatal(missing_path: Path):
    with pytest.raises(RecordStoreError) as excinfo:
        record_store.load_record_store(missing_path)
    assert excinfo.value.code == "E_STORE_MISSING"


def test_load_record_store_rejects_invalid_json(tmp_path: Path):
    path = tmp_path / "projects.json"
    path.write_text("[{not json", encoding="utf-8")

    with pytest.raises(RecordStoreError) as excinfo:
        record_store.load_record_store(path)
    assert excinfo.value.code == "E_STORE_INVALID_JSON"


def test_load_record_store_requires_name(tmp_path: Path):
    path = write_records(tmp_path, [{"slug": "nameless"}])

    with pytest.raises(RecordStoreError) as excinfo:
        record_store.load_record_store(path)
    assert excinfo.value.code == "E_SCHEMA_INVALID"
    assert "nameless" in str(excinfo.value)


def test_load_record_store_rejects_duplicate_slugs(tmp_path: Path):
    path = write_records(tmp_path, [make_record("dup"), make_record("dup", name="Dup Two")])

    with pytest.raises(RecordStoreError) as excinfo:
        record_store.load_record_store(path)
    assert excinfo.value.code == "E_DUPLICATE_SLUG"


def test_load_record_store_rejects_malformed_date(tmp_path: Path):
    path = write_records(tmp_path, [make_record("acme", last_funding_date="March 2024")])

    with pytest.raises(RecordStoreError) as excinfo:
        record_store.load_record_store(path)
    assert excinfo.value.code == "E_SCHEMA_INVALID"


def test_apply_writes_only_owned_fields_in_place(tmp_path: Path):
    row = make_record("acme", funding=5, segment="payments", last_funding_date="")
    path = write_records(tmp_path, [row])
    store = record_store.load_record_store(path)

    original = store.get("acme")
    updated = original.model_copy(update={"funding": 10})
    changed = store.apply([updated])
    record_store.save_record_store(store)

    rows = read_rows(path)
    assert changed == 1
    assert list(rows[0]) == ["slug", "name", "funding", "last_funding_date", "segment"]
    assert rows[0]["funding"] == 10
    # Blank date was not part of the change and is left as written.
    assert rows[0]["last_funding_date"] == ""


def test_apply_unknown_slug_raises(tmp_path: Path):
    store = record_store.load_record_store(write_records(tmp_path, [make_record("acme")]))

    with pytest.raises(RecordStoreError) as excinfo:
        store.apply([CompanyRecord(slug="ghost", name="Ghost")])
    assert excinfo.value.code == "E_UNKNOWN_SLUG"


def test_save_record_store_is_byte_stable(tmp_path: Path):
    path = write_records(tmp_path, [make_record("acme", funding=1)])
    store = record_store.load_record_store(path)

    first_sha = record_store.save_record_store(store)
    first_bytes = path.read_bytes()
    second_sha = record_store.save_record_store(record_store.load_record_store(path))

    assert first_sha == second_sha
    assert path.read_bytes() == first_bytes
    assert not path.with_suffix(".json.tmp").exists()


def test_optional_sources_default_to_empty(missing_path: Path):
    assert record_store.load_observation_batch(missing_path).enrichments == []
    assert record_store.load_filing_results(missing_path).companies == {}
    assert record_store.load_filing_matches(missing_path).matches == {}


def test_present_but_malformed_source_is_fatal(tmp_path: Path):
    path = tmp_path / "results.json"
    path.write_text(json.dumps({"companies": {"acme": {"funding_found": -5}}}), encoding="utf-8")

    with pytest.raises(RecordStoreError) as excinfo:
        record_store.load_filing_results(path)
    assert excinfo.value.code == "E_SOURCE_INVALID"


def test_non_utf8_store_is_fatal_and_names_the_file(tmp_path: Path):
    path = tmp_path / "projects.json"
    path.write_bytes(b'[{"slug": "acme", "name": "\xff\xfe"}]')

    with pytest.raises(RecordStoreError) as excinfo:
        record_store.load_record_store(path)
    assert excinfo.value.code == "E_STORE_INVALID_JSON"
    assert str(path) in str(excinfo.value)


def test_non_utf8_source_is_fatal(tmp_path: Path):
    path = tmp_path / "results.json"
    path.write_bytes(b'{"companies": {"\xff": {}}}')

    with pytest.raises(RecordStoreError) as excinfo:
        record_store.load_filing_results(path)
    assert excinfo.value.code == "E_SOURCE_INVALID_JSON"


def test_unreadable_store_path_is_fatal(tmp_path: Path):
    path = tmp_path / "projects.json"
    path.mkdir()

    with pytest.raises(RecordStoreError) as excinfo:
        record_store.load_record_store(path)
    assert excinfo.value.code == "E_INPUT_UNREADABLE"
    assert str(path) in str(excinfo.value)


def test_fractional_funding_is_kept_as_written(tmp_path: Path):
    path = write_records(tmp_path, [make_record("acme", funding=1_234_567.5), make_record("beta", funding=5_000_000)])

    store = record_store.load_record_store(path)
    record_store.save_record_store(store)

    assert store.get("acme").funding == 1_234_567.5
    assert store.get("beta").funding == 5_000_000
    assert isinstance(store.get("beta").funding, int)
    assert '"funding": 5000000' in path.read_text(encoding="utf-8")
