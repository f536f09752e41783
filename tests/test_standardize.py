from datetime import date, datetime

from normalize.standardize import normalize_date, standardize_incident


def _record(**overrides) -> dict:
    record = {
        "sourceId": "IC-2024-0001",
        "dateOccurred": "2024-01-05T10:30:00+08:00",
        "title": "Armed Robbery - OCEAN STAR (Tanker)",
        "description": "Four robbers boarded the tanker.",
        "location": {"latitude": 1.23, "longitude": 104.1, "place": "Singapore Strait", "region": "southeast_asia"},
        "vessel": {"name": "OCEAN STAR", "type": "Tanker", "flag": "Panama", "imo": 9123456},
        "category": "CAT 2",
        "raw": {"incidentNo": "IC-2024-0001"},
    }
    record.update(overrides)
    return record


def test_normalize_date_variants() -> None:
    assert normalize_date("2024-01-05T10:30:00+08:00") == "2024-01-05T02:30:00Z"
    assert normalize_date("2024-01-05T10:30:00") == "2024-01-05T10:30:00Z"
    assert normalize_date(datetime(2024, 1, 5, 10, 30)) == "2024-01-05T10:30:00Z"
    assert normalize_date("2024-01-05") == "2024-01-05T00:00:00Z"
    assert normalize_date(date(2024, 1, 5)) == "2024-01-05T00:00:00Z"
    assert normalize_date("sometime last week") == "sometime last week"
    assert normalize_date(None) == ""


def test_every_field_is_filled() -> None:
    incident = standardize_incident(
        {"sourceId": "7"}, source_name="ukmto", source_url="https://ukmto.test", now="2024-06-01T00:00:00Z"
    )
    assert incident["sourceId"] == "UKMTO-7"
    assert incident["source"] == "UKMTO"
    assert incident["title"] == ""
    assert incident["description"] == ""
    assert incident["dateOccurred"] == ""
    assert incident["vessel"] is None
    assert incident["updates"] == []
    assert incident["status"] == "active"
    assert incident["location"] == {
        "latitude": None,
        "longitude": None,
        "place": "",
        "region": "",
        "coordinates": {"latitude": None, "longitude": None},
    }
    assert incident["_metadata"]["validationStatus"] == "pending"


def test_maps_source_fields() -> None:
    incident = standardize_incident(_record(), source_name="RECAAP", source_url="https://recaap.test")
    assert incident["sourceId"] == "RECAAP-IC-2024-0001"
    assert incident["dateOccurred"] == "2024-01-05T02:30:00Z"
    assert incident["location"]["coordinates"] == {"latitude": 1.23, "longitude": 104.1}
    assert incident["vessel"]["imo"] == "9123456"
    assert incident["vessel"]["status"] is None
    assert incident["sourceUrl"] == "https://recaap.test"
    assert incident["raw"] == {"incidentNo": "IC-2024-0001"}


def test_restandardizing_is_idempotent() -> None:
    first = standardize_incident(_record(), source_name="RECAAP", source_url="u", now="2024-06-01T00:00:00Z")
    second = standardize_incident(first, source_name="RECAAP", source_url="u", now="2024-06-02T00:00:00Z")

    first.pop("_metadata")
    second_meta = second.pop("_metadata")
    assert second == first
    assert second_meta["standardizedAt"] == "2024-06-02T00:00:00Z"
    assert second["sourceId"] == "RECAAP-IC-2024-0001"


def test_flat_record_without_raw_keeps_original_as_raw() -> None:
    record = {"reference": "CWD-42", "title": "Boarding", "update": "Crew safe"}
    incident = standardize_incident(record, source_name="CWD", source_url="u")
    assert incident["sourceId"] == "CWD-42"
    assert incident["raw"] == record
    assert incident["updates"] == [{"text": "Crew safe"}]


def test_date_only_source_gets_a_utc_timestamp() -> None:
    record = {"reference": "CWD-2024-011", "date": "2024-03-12", "title": "Boarding"}
    incident = standardize_incident(record, source_name="cwd", source_url="https://example.test/cwd")
    assert incident["dateOccurred"] == "2024-03-12T00:00:00Z"
