from __future__ import annotations

import pytest

from job_importer.config import Dialect
from job_importer.engine import CandidateJob, FeedParser, RejectedEntry
from job_importer.engine.parser import MISSING_REQUIRED
from job_importer.errors import ParseError

ATOM_FEED = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Jobs</title>
  <entry>
    <id>job-1</id>
    <title>Backend Engineer</title>
    <author><name>Acme</name></author>
    <link href="https://jobs.example.com/job-1"/>
    <category term="Engineering"/>
    <published>2024-05-06T10:00:00Z</published>
    <content type="html">&lt;p&gt;Build &lt;b&gt;APIs&lt;/b&gt;&lt;/p&gt;</content>
  </entry>
</feed>
"""

RSS_FEED = b"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0">
  <channel>
    <title>Jobs</title>
    <item>
      <guid>job-1</guid>
      <title>Backend Engineer</title>
      <author>Acme</author>
      <link>https://jobs.example.com/job-1</link>
      <category>Engineering</category>
      <pubDate>Mon, 06 May 2024 10:00:00 +0000</pubDate>
      <description><![CDATA[<p>Build <b>APIs</b></p>]]></description>
    </item>
  </channel>
</rss>
"""

JOB_XML_FEED = b"""<?xml version="1.0"?>
<source>
  <job>
    <referencenumber>HE-77</referencenumber>
    <title>Assistant Professor</title>
    <company>State University</company>
    <city>Boston</city>
    <url>https://higheredjobs.example.com/77</url>
    <salary_min>60,000</salary_min>
    <salary_max>80,000</salary_max>
    <currency>USD</currency>
    <requirements><li>PhD</li><li>Teaching experience</li></requirements>
    <benefits>Health; Pension</benefits>
  </job>
</source>
"""


def _candidates(entries) -> list[CandidateJob]:
    return [entry for entry in entries if isinstance(entry, CandidateJob)]


def test_rss_and_atom_yield_equivalent_candidates(parser: FeedParser, upserter) -> None:
    rss = _candidates(parser.parse(RSS_FEED))
    atom = _candidates(parser.parse(ATOM_FEED))
    assert len(rss) == len(atom) == 1
    rss_record = upserter.validate("https://feed", rss[0])
    atom_record = upserter.validate("https://feed", atom[0])
    assert rss_record == atom_record
    assert rss_record.company == "Acme"
    assert rss_record.category == "Engineering"
    assert rss_record.description == "Build APIs"
    assert rss_record.application_url == "https://jobs.example.com/job-1"


def test_rss_and_atom_without_native_ids_share_derived_id(parser: FeedParser) -> None:
    rss = _candidates(parser.parse(RSS_FEED.replace(b"<guid>job-1</guid>", b"")))
    atom = _candidates(parser.parse(ATOM_FEED.replace(b"<id>job-1</id>", b"")))
    assert rss[0].external_id != "job-1"
    assert rss[0].external_id == atom[0].external_id


def test_unreadable_salary_range_keeps_listing_valid(parser: FeedParser, make_rss, item, upserter) -> None:
    (entry,) = parser.parse(make_rss([item("s", "Dev", extra="<salary>$120k base, 10% bonus</salary>")]))
    record = upserter.validate("https://feed", entry)
    assert record.title == "Dev"
    assert record.salary is None


def test_detects_dialects(parser: FeedParser, make_rss, item) -> None:
    assert parser.parse_document(RSS_FEED).dialect is Dialect.RSS
    assert parser.parse_document(ATOM_FEED).dialect is Dialect.ATOM
    assert parser.parse_document(JOB_XML_FEED).dialect is Dialect.JOB_XML
    assert parser.parse_document(make_rss([item("a", "Dev")])).dialect is Dialect.RSS


def test_namespaced_fields_are_matched(parser: FeedParser, make_rss, item) -> None:
    entries = list(parser.parse(make_rss([item("a-1", "Data Analyst", "Globex", location="Berlin")])))
    assert entries == [
        CandidateJob(
            external_id="a-1",
            title="Data Analyst",
            company="Globex",
            location="Berlin",
            application_url="https://jobs.example.com/a-1",
            published_date="Mon, 06 May 2024 10:00:00 +0000",
        )
    ]


def test_job_xml_salary_and_lists(parser: FeedParser) -> None:
    (entry,) = parser.parse(JOB_XML_FEED)
    assert isinstance(entry, CandidateJob)
    assert entry.external_id == "HE-77"
    assert entry.location == "Boston"
    assert entry.salary == {"min": 60000.0, "max": 80000.0, "currency": "USD"}
    assert entry.requirements == ["PhD", "Teaching experience"]
    assert entry.benefits == ["Health", "Pension"]


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("$50k - $70k", {"min": 50000.0, "max": 70000.0, "currency": "USD"}),
        ("EUR 45,000 per year", {"min": 45000.0, "max": None, "currency": "EUR"}),
        ("£30000-40000", {"min": 30000.0, "max": 40000.0, "currency": "GBP"}),
        ("USD 100000 - 120000 per year + 10% bonus", {"min": 100000.0, "max": 120000.0, "currency": "USD"}),
        ("$120k base, 10% bonus", None),
    ],
)
def test_free_text_salary(parser: FeedParser, make_rss, item, text, expected) -> None:
    (entry,) = parser.parse(make_rss([item("s", "Dev", extra=f"<salary>{text}</salary>")]))
    assert entry.salary == expected


def test_generic_fallback_finds_repeated_element(parser: FeedParser) -> None:
    payload = b"""<export><meta><title>ignored</title></meta>
      <offers>
        <offer><title>One</title><employer>A</employer><link>https://x/1</link></offer>
        <offer><title>Two</title><employer>B</employer><link>https://x/2</link></offer>
      </offers></export>"""
    feed = parser.parse_document(payload)
    entries = _candidates(feed.entries)
    assert feed.dialect is Dialect.GENERIC
    assert [entry.title for entry in entries] == ["One", "Two"]
    assert [entry.company for entry in entries] == ["A", "B"]


def test_entry_without_title_company_or_link_is_rejected(parser: FeedParser) -> None:
    payload = b"<rss><channel><item><description>orphan</description></item></channel></rss>"
    (entry,) = parser.parse(payload)
    assert entry == RejectedEntry(item="entry 1", reason=MISSING_REQUIRED)


def test_derived_id_is_stable(parser: FeedParser, make_rss, item) -> None:
    payload = make_rss([item(None, "Writer", "Initech")])
    first = _candidates(parser.parse(payload))[0].external_id
    second = _candidates(parser.parse(payload))[0].external_id
    assert first == second
    assert len(first) == 32


@pytest.mark.parametrize("payload", [b"", b"   ", b"<rss><channel>", b"not xml at all"])
def test_malformed_documents_raise_immediately(parser: FeedParser, payload: bytes) -> None:
    with pytest.raises(ParseError):
        parser.parse(payload)


def test_entity_expansion_is_refused(parser: FeedParser) -> None:
    payload = b"""<?xml version="1.0"?>
<!DOCTYPE rss [<!ENTITY lol "lol"><!ENTITY lol2 "&lol;&lol;&lol;&lol;&lol;">]>
<rss><channel><item><title>&lol2;</title></item></channel></rss>
"""
    with pytest.raises(ParseError):
        parser.parse(payload)


def test_dialect_hint_is_respected(parser: FeedParser) -> None:
    feed = parser.parse_document(JOB_XML_FEED, Dialect.JOB_XML)
    assert feed.dialect is Dialect.JOB_XML
    assert len(_candidates(feed.entries)) == 1
