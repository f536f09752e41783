from __future__ import annotations

import re


_DECIMAL_PAIR_RE = re.compile(
    r"(?P<lat>-?\d{1,2}\.\d+)\s*,\s*(?P<lon>-?\d{1,3}\.\d+)",
    flags=re.UNICODE,
)

_DECIMAL_HEM_PAIR_RE = re.compile(
    r"(?P<lat>\d{1,2}(?:\.\d+)?)\s*(?P<lat_hem>[NS])\s*[, ]\s*(?P<lon>\d{1,3}(?:\.\d+)?)\s*(?P<lon_hem>[EW])",
    flags=re.UNICODE | re.IGNORECASE,
)

_DEGMIN_HEM_PAIR_RE = re.compile(
    r"(?P<lat_deg>\d{1,2})\s*[-° ]\s*(?P<lat_min>\d{1,2}(?:\.\d+)?)'?\s*(?P<lat_hem>[NS])\s*[, ]\s*(?P<lon_deg>\d{1,3})\s*[-° ]\s*(?P<lon_min>\d{1,2}(?:\.\d+)?)'?\s*(?P<lon_hem>[EW])",
    flags=re.UNICODE | re.IGNORECASE,
)

# 12°34'56"N, 012 34 56 E, 123456N
_DMS_RE = re.compile(
    r"^\s*(?P<deg>\d{1,3})\s*[°\s:-]?\s*(?P<min>\d{2})\s*['\s:-]?\s*(?P<sec>\d{2}(?:\.\d+)?)?\s*\"?\s*(?P<hem>[NSEW])?\s*$",
    flags=re.IGNORECASE,
)


def _signed(value: float, hemisphere: str | None) -> float:
    if hemisphere and hemisphere.casefold() in {"s", "w"}:
        return -value
    return value


def degmin_to_decimal(
    degrees: float | str, minutes: float | str, hemisphere: str | None
) -> float:
    value = abs(float(degrees)) + float(minutes) / 60.0
    return _signed(value, hemisphere)


def dms_to_decimal(text: str) -> float | None:
    match = _DMS_RE.match(text or "")
    if match is None:
        return None
    value = float(match.group("deg")) + float(match.group("min")) / 60.0
    if match.group("sec"):
        value += float(match.group("sec")) / 3600.0
    return _signed(value, match.group("hem"))


def format_degmin(
    lat_deg: float | str,
    lat_min: float | str,
    lat_hem: str,
    lon_deg: float | str,
    lon_min: float | str,
    lon_hem: str,
) -> str:
    return (
        f"{float(lat_deg):.0f}°{float(lat_min):.2f}'{lat_hem} "
        f"{float(lon_deg):.0f}°{float(lon_min):.2f}'{lon_hem}"
    )


def extract_coords(text: str) -> list[tuple[float, float]]:
    coords: list[tuple[float, float]] = []

    for match in _DEGMIN_HEM_PAIR_RE.finditer(text):
        lat = degmin_to_decimal(
            match.group("lat_deg"), match.group("lat_min"), match.group("lat_hem")
        )
        lon = degmin_to_decimal(
            match.group("lon_deg"), match.group("lon_min"), match.group("lon_hem")
        )
        coords.append((lat, lon))
    if coords:
        return coords

    for match in _DECIMAL_HEM_PAIR_RE.finditer(text):
        lat = _signed(float(match.group("lat")), match.group("lat_hem"))
        lon = _signed(float(match.group("lon")), match.group("lon_hem"))
        coords.append((lat, lon))
    if coords:
        return coords

    for match in _DECIMAL_PAIR_RE.finditer(text):
        coords.append((float(match.group("lat")), float(match.group("lon"))))

    return coords


def extract_first_coords(text: str) -> tuple[float, float] | None:
    coords = extract_coords(text or "")
    if not coords:
        return None
    return coords[0]
