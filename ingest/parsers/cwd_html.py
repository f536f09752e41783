from __future__ import annotations

import re
from datetime import date, datetime

from bs4 import BeautifulSoup, Tag

from ingest.parsers.json import MalformedResponseError


_LAST_UPDATED_RE = re.compile(r"last updated:.*$", flags=re.IGNORECASE | re.DOTALL)
_UPDATE_PREFIX_RE = re.compile(r"\bupdate(?:\s*\d+)?\s*:", flags=re.IGNORECASE)
_DAY_MON_YEAR_RE = re.compile(
    r"(?P<day>\d{1,2})\s+(?P<mon>[A-Za-z]{3})[A-Za-z]*\s+(?P<year>\d{4})"
)
_MONTHS = ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")

_ROW_FIELDS = ("date", "reference", "region", "category", "aggressors", "originalSource")


def parse_cwd_date(text: str) -> str:
    text = text.strip()
    match = _DAY_MON_YEAR_RE.search(text)
    if match is not None:
        month = match.group("mon").casefold()
        if month in _MONTHS:
            try:
                return date(
                    int(match.group("year")),
                    _MONTHS.index(month) + 1,
                    int(match.group("day")),
                ).isoformat()
            except ValueError:
                return text
    try:
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError:
        return text


def split_updates(description: str) -> tuple[str, list[dict]]:
    matches = list(_UPDATE_PREFIX_RE.finditer(description))
    if not matches:
        return description.strip(), []

    updates: list[dict] = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(description)
        text = description[match.end() : end].strip()
        if text:
            prefix = " ".join(match.group(0).split())
            updates.append({"text": f"{prefix} {text}"})
    return description[: matches[0].start()].strip(), updates


def _parse_section(section: Tag) -> dict:
    record: dict = {}
    heading = section.find("h6")
    record["title"] = heading.get_text(strip=True) if heading is not None else ""

    description = ""
    for row in section.select("table tr"):
        if row.find("i") is not None:
            continue
        cells = row.find_all(["td", "th"])
        if len(cells) == 6 and not cells[0].get("colspan"):
            values = [c.get_text(" ", strip=True) for c in cells]
            record.update(zip(_ROW_FIELDS, values))
            record["date"] = parse_cwd_date(record["date"])
        elif len(cells) == 1 and str(cells[0].get("colspan")) == "6":
            description = cells[0].get_text(" ", strip=True)

    description = _LAST_UPDATED_RE.sub("", description).strip()
    record["description"], record["updates"] = split_updates(description)
    return record


def parse_cwd_sections(html: str) -> list[dict]:
    soup = BeautifulSoup(html, "html.parser")
    sections = soup.find_all(id="features")
    if not sections:
        raise MalformedResponseError("no #features sections in page")
    return [_parse_section(section) for section in sections]
