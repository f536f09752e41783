from datetime import UTC, datetime

from normalize.standardize import standardize_incident
from normalize.validate import normalize_region, parse_incident_date, validate_incident


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def _incident(**overrides) -> dict:
    record = {
        "sourceId": "1",
        "dateOccurred": "2024-05-30T08:00:00Z",
        "title": "Suspicious approach",
        "description": "Skiff approached the vessel.",
        "location": {"latitude": "12.5", "longitude": "45.1", "region": "Indian Ocean"},
    }
    record.update(overrides)
    return standardize_incident(record, source_name="UKMTO", source_url="u")


def test_valid_incident_is_normalized() -> None:
    validated = validate_incident(_incident(), source="UKMTO", now=NOW)
    assert validated.is_valid
    assert validated.accepted
    location = validated.value["location"]
    assert location["latitude"] == 12.5
    assert location["coordinates"] == {"latitude": 12.5, "longitude": 45.1}
    assert location["region"] == "indian_ocean"
    assert validated.value["_metadata"]["validationStatus"] == "valid"
    assert validated.value["_metadata"]["validationErrors"] == []


def test_missing_description_is_retained_with_warning() -> None:
    validated = validate_incident(_incident(description=""), source="UKMTO", now=NOW)
    assert validated.warnings == ("Missing required field: description",)
    assert not validated.is_valid
    assert validated.accepted
    assert validated.value["_metadata"]["validationStatus"] == "invalid"


def test_strict_mode_rejects_warnings() -> None:
    validated = validate_incident(_incident(title=""), source="UKMTO", strict=True, now=NOW)
    assert not validated.accepted


def test_date_checks() -> None:
    bad = validate_incident(_incident(dateOccurred="not a date"), source="UKMTO", now=NOW)
    assert "Invalid date format: not a date" in bad.warnings

    future = validate_incident(_incident(dateOccurred="2024-06-05T00:00:00Z"), source="UKMTO", now=NOW)
    assert "Date is in the future: 2024-06-05T00:00:00Z" in future.warnings

    tomorrow = validate_incident(_incident(dateOccurred="2024-06-02T06:00:00Z"), source="UKMTO", now=NOW)
    assert tomorrow.is_valid


def test_out_of_range_coordinates() -> None:
    validated = validate_incident(
        _incident(location={"latitude": 95, "longitude": -200}), source="UKMTO", now=NOW
    )
    assert len(validated.warnings) == 2
    assert all(w.startswith("Invalid ") for w in validated.warnings)


def test_input_is_not_mutated() -> None:
    incident = _incident()
    validate_incident(incident, source="UKMTO", now=NOW)
    assert incident["location"]["latitude"] == "12.5"
    assert incident["_metadata"]["validationStatus"] == "pending"


def test_region_vocabulary() -> None:
    assert normalize_region("West Africa") == "west_africa"
    assert normalize_region("Gulf of Guinea") == "other"


def test_parse_incident_date() -> None:
    assert parse_incident_date("2024-01-05") == datetime(2024, 1, 5, tzinfo=UTC)
    assert parse_incident_date("2024-01-05T10:00:00Z") == datetime(2024, 1, 5, 10, tzinfo=UTC)
    assert parse_incident_date("") is None
