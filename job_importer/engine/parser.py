"""Feed parsing: dialect detection and normalisation into candidate jobs.

Every supported schema (RSS 2.0, Atom, bespoke job XML) is described by a
:class:`DialectSpec`: the element names that delimit an entry plus an alias
table mapping canonical fields to element names. A single extractor reads any
entry given a spec; the ``GENERIC`` spec merges every alias and is used when
no known dialect can be detected.
"""

from __future__ import annotations

import hashlib
import re
import xml.etree.ElementTree as ET
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterator, Union

from defusedxml import DefusedXmlException
from defusedxml import ElementTree as SafeET
from selectolax.parser import HTMLParser

from ..config import Dialect
from ..errors import ParseError
from ..models import parse_datetime

MISSING_REQUIRED = "missing required fields"


@dataclass(slots=True)
class CandidateJob:
    """Normalised but not yet validated listing extracted from a feed entry."""

    external_id: str
    title: str
    company: str = ""
    location: str = ""
    job_type: str = ""
    category: str = ""
    description: str = ""
    salary: dict[str, Any] | None = None
    requirements: list[str] = field(default_factory=list)
    benefits: list[str] = field(default_factory=list)
    application_url: str = ""
    published_date: str | None = None

    def label(self) -> str:
        return self.external_id or self.title or "<unknown>"


@dataclass(slots=True)
class RejectedEntry:
    """Feed entry that could not be turned into a candidate."""

    item: str
    reason: str


ParsedEntry = Union[CandidateJob, RejectedEntry]


@dataclass(frozen=True)
class DialectSpec:
    dialect: Dialect
    roots: tuple[str, ...]
    items: tuple[str, ...]
    fields: dict[str, tuple[str, ...]]


_COMMON_FIELDS: dict[str, tuple[str, ...]] = {
    "apply": ("application_url", "apply_url", "applyurl", "apply_link"),
    "salary": ("salary", "compensation", "salary_range", "pay"),
    "salary_min": ("salary_min", "salarymin", "min_salary", "salary_from"),
    "salary_max": ("salary_max", "salarymax", "max_salary", "salary_to"),
    "currency": ("currency", "salary_currency", "salarycurrency"),
    "requirements": ("requirements", "qualifications", "skills"),
    "benefits": ("benefits", "perks"),
}

_RSS = DialectSpec(
    dialect=Dialect.RSS,
    roots=("rss", "rdf"),
    items=("item",),
    fields={
        "id": ("guid",),
        "title": ("title",),
        "company": ("company", "company_name", "hiring_organization", "creator", "author"),
        "link": ("link",),
        "location": ("location", "job_location", "region"),
        "job_type": ("job_type", "jobtype", "type"),
        "category": ("category", "job_category"),
        "description": ("description", "encoded"),
        "published": ("pubdate", "date", "published"),
        **_COMMON_FIELDS,
    },
)

_ATOM = DialectSpec(
    dialect=Dialect.ATOM,
    roots=("feed",),
    items=("entry",),
    fields={
        "id": ("id",),
        "title": ("title",),
        "company": ("company", "author/name", "author"),
        "link": ("link",),
        "location": ("location",),
        "job_type": ("job_type", "type"),
        "category": ("category",),
        "description": ("content", "summary"),
        "published": ("published", "updated"),
        **_COMMON_FIELDS,
    },
)

_JOB_XML = DialectSpec(
    dialect=Dialect.JOB_XML,
    roots=("jobs", "source", "positions", "vacancies", "listings", "joblist"),
    items=("job", "position", "vacancy", "listing"),
    fields={
        "id": ("id", "job_id", "jobid", "reference", "referencenumber", "guid"),
        "title": ("title", "job_title", "jobtitle", "position_title"),
        "company": ("company", "company_name", "companyname", "employer", "hiring_organization"),
        "link": ("url", "link", "job_url"),
        "location": ("location", "city", "job_location"),
        "job_type": ("job_type", "jobtype", "type", "employment_type"),
        "category": ("category", "industry", "department"),
        "description": ("description", "summary", "body"),
        "published": ("date", "date_posted", "posted_date", "published", "pubdate", "created_at"),
        **_COMMON_FIELDS,
    },
)


def _merge_aliases(*specs: DialectSpec) -> dict[str, tuple[str, ...]]:
    merged: dict[str, list[str]] = {}
    for spec in specs:
        for key, aliases in spec.fields.items():
            bucket = merged.setdefault(key, [])
            bucket.extend(alias for alias in aliases if alias not in bucket)
    return {key: tuple(values) for key, values in merged.items()}


_GENERIC = DialectSpec(
    dialect=Dialect.GENERIC,
    roots=(),
    items=(),
    fields=_merge_aliases(_RSS, _JOB_XML, _ATOM),
)

DIALECTS: dict[Dialect, DialectSpec] = {
    Dialect.RSS: _RSS,
    Dialect.ATOM: _ATOM,
    Dialect.JOB_XML: _JOB_XML,
    Dialect.GENERIC: _GENERIC,
}

_AMOUNT_PATTERN = re.compile(r"\d[\d,]*(?:\.\d+)?\s*[kK]?")
_CURRENCY_CODE = re.compile(
    r"\b(USD|EUR|GBP|CAD|AUD|NZD|CHF|INR|JPY|SGD|SEK|NOK|DKK|PLN|BRL|MXN|ZAR)\b"
)
_CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY", "₹": "INR"}
_LIST_SPLIT = re.compile(r"[\n;•]+")


@dataclass(slots=True)
class ParsedFeed:
    dialect: Dialect
    entries: Iterator[ParsedEntry]


def _local(tag: Any) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1].rsplit(":", 1)[-1].lower()


def _collect_items(node: ET.Element, names: tuple[str, ...]) -> list[ET.Element]:
    found: list[ET.Element] = []
    for child in node:
        if _local(child.tag) in names:
            found.append(child)
        else:
            found.extend(_collect_items(child, names))
    return found


def _node_text(node: ET.Element) -> str:
    text = "".join(node.itertext()).strip()
    if text:
        return text
    for attr in ("href", "term", "url", "value"):
        value = node.attrib.get(attr)
        if value and value.strip():
            return value.strip()
    return ""


def _find_path(node: ET.Element, path: str) -> list[ET.Element]:
    current = [node]
    for part in path.split("/"):
        current = [child for parent in current for child in parent if _local(child.tag) == part]
    return current


def _clean_html(text: str) -> str:
    if "<" in text and ">" in text:
        text = HTMLParser(text).text(separator=" ", strip=True)
    return " ".join(text.split())


def _amount(text: str) -> float | str:
    cleaned = _CURRENCY_CODE.sub("", text).replace(",", "").replace(" ", "")
    multiplier = 1.0
    if cleaned[-1:] in ("k", "K"):
        multiplier = 1000.0
        cleaned = cleaned[:-1]
    cleaned = cleaned.lstrip("".join(_CURRENCY_SYMBOLS))
    try:
        return float(cleaned) * multiplier
    except ValueError:
        return text


def _currency(text: str) -> str | None:
    match = _CURRENCY_CODE.search(text)
    if match:
        return match.group(1)
    for symbol, code in _CURRENCY_SYMBOLS.items():
        if symbol in text:
            return code
    return None


class FeedParser:
    """Convert raw feed bytes into :class:`CandidateJob` entries."""

    def parse(self, raw: bytes | str, dialect_hint: Dialect | None = None) -> Iterator[ParsedEntry]:
        return self.parse_document(raw, dialect_hint).entries

    def parse_document(self, raw: bytes | str, dialect_hint: Dialect | None = None) -> ParsedFeed:
        """Load and classify the document; entries are produced lazily.

        Raises :class:`ParseError` straight away when the payload is not a
        well-formed XML document.
        """

        root = self._load(raw)
        spec, items = self._resolve(root, dialect_hint)
        return ParsedFeed(dialect=spec.dialect, entries=self._iter_entries(items, spec))

    def detect_dialect(self, root: ET.Element) -> Dialect:
        spec, _ = self._resolve(root, None)
        return spec.dialect

    # ------------------------------------------------------------------
    @staticmethod
    def _load(raw: bytes | str) -> ET.Element:
        payload = raw.encode("utf-8") if isinstance(raw, str) else raw
        payload = payload.lstrip()
        if not payload:
            raise ParseError("empty feed document")
        try:
            return SafeET.fromstring(payload)
        except ET.ParseError as exc:
            raise ParseError(f"malformed feed document: {exc}") from exc
        except DefusedXmlException as exc:
            raise ParseError(f"forbidden construct in feed document: {exc}") from exc

    def _resolve(
        self, root: ET.Element, dialect_hint: Dialect | None
    ) -> tuple[DialectSpec, list[ET.Element]]:
        if dialect_hint not in (None, Dialect.AUTO, Dialect.GENERIC):
            spec = DIALECTS[dialect_hint]
            items = _collect_items(root, spec.items)
            if items or _local(root.tag) in spec.roots:
                return spec, items
        if dialect_hint is not Dialect.GENERIC:
            root_name = _local(root.tag)
            known = (_RSS, _ATOM, _JOB_XML)
            for spec in known:
                if root_name in spec.roots:
                    return spec, _collect_items(root, spec.items)
            for spec in known:
                items = _collect_items(root, spec.items)
                if items:
                    return spec, items
        return _GENERIC, self._generic_items(root)

    @staticmethod
    def _generic_items(root: ET.Element) -> list[ET.Element]:
        title_aliases = _GENERIC.fields["title"]
        candidates = [
            node
            for node in root.iter()
            if any(_local(child.tag) in title_aliases for child in node)
        ]
        if not candidates:
            return []
        tag, _ = Counter(_local(node.tag) for node in candidates).most_common(1)[0]
        return [node for node in candidates if _local(node.tag) == tag]

    def _iter_entries(self, items: list[ET.Element], spec: DialectSpec) -> Iterator[ParsedEntry]:
        for index, item in enumerate(items, start=1):
            yield self._extract(item, spec, index)

    def _extract(self, item: ET.Element, spec: DialectSpec, index: int) -> ParsedEntry:
        title = self._value(item, spec, "title")
        company = self._value(item, spec, "company")
        link = self._value(item, spec, "link")
        if not (title or company or link):
            return RejectedEntry(item=f"entry {index}", reason=MISSING_REQUIRED)
        published = self._value(item, spec, "published") or None
        external_id = (
            self._value(item, spec, "id")
            or item.attrib.get("id", "").strip()
            or self._derive_id(title, company, published)
        )
        return CandidateJob(
            external_id=external_id,
            title=title,
            company=company,
            location=self._value(item, spec, "location"),
            job_type=self._value(item, spec, "job_type"),
            category=self._value(item, spec, "category"),
            description=_clean_html(self._value(item, spec, "description")),
            salary=self._salary(item, spec),
            requirements=self._list(item, spec, "requirements"),
            benefits=self._list(item, spec, "benefits"),
            application_url=self._value(item, spec, "apply") or link,
            published_date=published,
        )

    @staticmethod
    def _derive_id(title: str, company: str, published: str | None) -> str:
        stamp = (published or "").strip()
        try:
            parsed = parse_datetime(stamp)
        except ValueError:
            parsed = None
        if parsed is not None:
            stamp = parsed.isoformat()
        seed = "|".join((title.strip().lower(), company.strip().lower(), stamp))
        return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:32]

    @staticmethod
    def _nodes(item: ET.Element, spec: DialectSpec, key: str) -> Iterator[ET.Element]:
        for alias in spec.fields.get(key, ()):
            if "/" in alias:
                yield from _find_path(item, alias)
                continue
            for child in item:
                if _local(child.tag) == alias:
                    yield child

    def _value(self, item: ET.Element, spec: DialectSpec, key: str) -> str:
        for node in self._nodes(item, spec, key):
            text = _node_text(node)
            if text:
                return text
        return ""

    def _list(self, item: ET.Element, spec: DialectSpec, key: str) -> list[str]:
        values: list[str] = []
        for node in self._nodes(item, spec, key):
            children = list(node)
            if children:
                values.extend(_node_text(child) for child in children)
                continue
            text = _node_text(node)
            if "<li" in text:
                values.extend(li.text(separator=" ", strip=True) for li in HTMLParser(text).css("li"))
            else:
                values.extend(part.strip() for part in _LIST_SPLIT.split(text))
        return [" ".join(value.split()) for value in values if value and value.strip()]

    def _salary(self, item: ET.Element, spec: DialectSpec) -> dict[str, Any] | None:
        low = self._value(item, spec, "salary_min")
        high = self._value(item, spec, "salary_max")
        currency = self._value(item, spec, "currency") or None
        if low or high:
            return {
                "min": _amount(low) if low else None,
                "max": _amount(high) if high else None,
                "currency": currency or _currency(f"{low} {high}"),
            }
        text = self._value(item, spec, "salary")
        if not text:
            return None
        amounts = [_amount(match.strip()) for match in _AMOUNT_PATTERN.findall(text)[:2]]
        if not amounts:
            return None
        low = amounts[0]
        high = amounts[1] if len(amounts) > 1 else None
        if not isinstance(low, float) or (high is not None and (not isinstance(high, float) or high < low)):
            # inconsistent free-text range: drop the salary, keep the listing
            return None
        return {"min": low, "max": high, "currency": currency or _currency(text)}


__all__ = [
    "CandidateJob",
    "DIALECTS",
    "DialectSpec",
    "FeedParser",
    "MISSING_REQUIRED",
    "ParsedEntry",
    "ParsedFeed",
    "RejectedEntry",
]
