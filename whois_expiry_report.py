#!/usr/bin/env python3
"""
WHOIS Expiry Reporter
Looks up domains through a WHOIS web service, extracts registration
details from the free-text answers, and reports how many days each
domain has left before it expires.

Usage:
    python whois_expiry_report.py example.com example.org --format html -o reports/
    python whois_expiry_report.py --input domains.txt --format csv
    cat domains.txt | python whois_expiry_report.py --format xml
"""

from __future__ import annotations

import argparse
import csv
import html
import json
import locale
import os
import re
import sys
import xml.etree.ElementTree as ET
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, TextIO, Tuple

import requests


DEFAULT_SERVICE_URL = "http://www.webservicex.net/whois.asmx/GetWhoIs"
DEFAULT_TIMEOUT = 30

OUTPUT_KINDS: Sequence[str] = ("object", "csv", "xml", "html")
REPORT_FILENAMES: Dict[str, str] = {
    "csv": "whois_report.csv",
    "xml": "whois_report.xml",
    "html": "whois_report.html",
}
SORTTABLE_SCRIPT = "sorttable.js"

NOT_FOUND_MARKER = "No match for"

ERROR_LOOKUP = "Unknown Error retrieving WhoIs information"
ERROR_NOT_REGISTERED = "Unable to find registration for domain"
ERROR_BAD_FORMAT = "WhoIs data not in correct format"
ERROR_BAD_DATE = "Unable to parse dates in WhoIs data"
ERROR_NO_EXPIRATION = "WhoIs data has no expiration date"


def _line_pattern(label: str) -> re.Pattern[str]:
    return re.compile(rf"^[ \t]*(?:{label}):[ \t]*(.*\S)", re.IGNORECASE | re.MULTILINE)


# Each field is matched on its own; the first matching line wins.
FIELD_PATTERNS: Dict[str, re.Pattern[str]] = {
    "domain_name": _line_pattern(r"Domain Name"),
    "registrar": _line_pattern(r"Registrar"),
    "whois_server": _line_pattern(r"(?:Registrar[ \t]+)?Whois Server"),
    "domain_lock": _line_pattern(r"(?:Domain[ \t]+)?Status"),
    "last_updated": _line_pattern(r"Updated Date"),
    "created": _line_pattern(r"Creation Date"),
    "expiration": _line_pattern(
        r"Expiration Date|Registry Expiry Date|Registrar Registration Expiration Date"
    ),
}
NAME_SERVER_PATTERN = _line_pattern(r"Name Server")

# Registries disagree on date layout.
DATE_FORMATS: Sequence[str] = [
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y.%m.%d",
    "%Y.%m.%d %H:%M:%S",
    "%Y/%m/%d",
    "%Y/%m/%d %H:%M:%S",
    "%d-%b-%Y",
    "%d-%b-%Y %H:%M:%S",
    "%d-%B-%Y",
    "%d.%m.%Y",
    "%d.%m.%Y %H:%M:%S",
]

RECORD_COLUMNS: Sequence[str] = [
    "DomainName",
    "Registrar",
    "WhoIsServer",
    "NameServers",
    "DomainLock",
    "LastUpdated",
    "Created",
    "Expiration",
    "DaysLeft",
]


class ConfigurationError(Exception):
    """Raised for invalid run settings, before any lookup is attempted."""


@dataclass(frozen=True)
class Thresholds:
    red: int = 30
    yellow: int = 90
    grey: int = 365

    @property
    def is_ordered(self) -> bool:
        return self.red < self.yellow < self.grey


@dataclass(frozen=True)
class WhoisRecord:
    domain_name: str
    registrar: str = ""
    whois_server: str = ""
    name_servers: str = ""
    domain_lock: str = ""
    last_updated: Optional[date] = None
    created: Optional[date] = None
    expiration: Optional[date] = None
    days_left: Optional[int] = None
    error: Optional[str] = field(default=None)

    @classmethod
    def failure(cls, domain: str, reason: str) -> "WhoisRecord":
        message = f"{domain.strip().upper()}: {reason}"
        return cls(domain_name=message, error=message)

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @property
    def display_days_left(self) -> int:
        if self.is_failure or self.days_left is None:
            return 0
        return self.days_left


def read_domain_stream(handle: Iterable[str]) -> List[str]:
    domains: List[str] = []
    for line in handle:
        candidate = line.strip()
        if candidate and not candidate.startswith("#"):
            domains.append(candidate)
    return domains


def read_domains(path: Path) -> List[str]:
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")

    with path.open("r", encoding="utf-8") as handle:
        return read_domain_stream(handle)


def gather_domains(
    arguments: Sequence[str],
    input_path: Optional[Path] = None,
    stdin: Optional[TextIO] = None,
) -> List[str]:
    """Combine positional domains, an input file and piped standard input.

    A positional ``-`` reads standard input in place. When no domains and no
    file are given, standard input is read if it is not a terminal.
    """
    stdin = stdin if stdin is not None else sys.stdin
    domains: List[str] = []

    for argument in arguments:
        if argument == "-":
            domains.extend(read_domain_stream(stdin))
        elif argument.strip():
            domains.append(argument.strip())

    if input_path is not None:
        domains.extend(read_domains(input_path))

    if not arguments and input_path is None and stdin is not None and not stdin.isatty():
        domains.extend(read_domain_stream(stdin))

    return domains


def resolve_output_dir(value: Optional[str]) -> Path:
    if not value:
        return Path.cwd()

    directory = Path(value).expanduser()
    if not directory.exists():
        raise ConfigurationError(f"Output path does not exist: {directory}")
    if not directory.is_dir():
        raise ConfigurationError(f"Output path is not a directory: {directory}")
    return directory


def unwrap_service_response(body: str) -> str:
    """Return the WHOIS text carried by a web service reply.

    The ASMX GET binding wraps the answer in ``<string xmlns="...">``; plain
    text replies are passed through untouched.
    """
    stripped = body.lstrip()
    if not stripped.startswith("<"):
        return body

    root = ET.fromstring(stripped)
    if root.tag == "string" or root.tag.endswith("}string"):
        return root.text or ""
    return body


def fetch_whois_text(
    session: requests.Session,
    domain: str,
    service_url: str = DEFAULT_SERVICE_URL,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> Tuple[Optional[str], Optional[str]]:
    try:
        response = session.get(service_url, params={"HostName": domain}, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        return None, f"WHOIS service request failed: {exc}"

    try:
        return unwrap_service_response(response.text), None
    except ET.ParseError as exc:
        return None, f"WHOIS service returned malformed XML: {exc}"


def normalize_date_string(value: str) -> str:
    cleaned = value.strip()
    cleaned = re.sub(r"\s*\(.*\)$", "", cleaned)
    cleaned = re.sub(r"\s+(?:UTC|GMT)$", "", cleaned)
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+0000"
    return cleaned.strip()


def parse_whois_date(value: str) -> date:
    """Parse a WHOIS date field, raising ValueError when no format fits."""
    cleaned = normalize_date_string(value)

    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc)
        return parsed.date()

    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError, OverflowError):
        raise ValueError(f"Unrecognised WHOIS date: {value!r}") from None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def extract_fields(text: str) -> Dict[str, Optional[str]]:
    fields: Dict[str, Optional[str]] = {}
    for name, pattern in FIELD_PATTERNS.items():
        match = pattern.search(text)
        fields[name] = match.group(1).strip() if match else None

    # "Domain Status: ok https://icann.org/epp#ok"
    if fields["domain_lock"]:
        fields["domain_lock"] = fields["domain_lock"].split(" https://")[0].split(" http://")[0]
    return fields


def extract_name_servers(text: str) -> List[str]:
    return [match.group(1).strip() for match in NAME_SERVER_PATTERN.finditer(text)]


def days_between(today: date, expiration: date) -> int:
    return (expiration - today).days


def build_record(
    domain: str,
    text: Optional[str],
    error: Optional[str] = None,
    today: Optional[date] = None,
) -> WhoisRecord:
    """Turn one lookup outcome into a success or failure record."""
    if error is not None or text is None:
        return WhoisRecord.failure(domain, ERROR_LOOKUP)
    if NOT_FOUND_MARKER in text:
        return WhoisRecord.failure(domain, ERROR_NOT_REGISTERED)

    fields = extract_fields(text)
    if not fields["domain_name"]:
        return WhoisRecord.failure(domain, ERROR_BAD_FORMAT)

    try:
        dates = {
            name: parse_whois_date(fields[name]) if fields[name] else None
            for name in ("last_updated", "created", "expiration")
        }
    except ValueError:
        return WhoisRecord.failure(domain, ERROR_BAD_DATE)

    expiration = dates["expiration"]
    if expiration is None:
        return WhoisRecord.failure(domain, ERROR_NO_EXPIRATION)

    today = today or date.today()
    return WhoisRecord(
        domain_name=domain.strip(),
        registrar=fields["registrar"] or "",
        whois_server=fields["whois_server"] or "",
        name_servers=", ".join(extract_name_servers(text)),
        domain_lock=fields["domain_lock"] or "",
        last_updated=dates["last_updated"],
        created=dates["created"],
        expiration=expiration,
        days_left=days_between(today, expiration),
    )


def sort_records(records: Iterable[WhoisRecord]) -> List[WhoisRecord]:
    return sorted(records, key=lambda record: record.domain_name)


def collect_records(
    domains: Sequence[str],
    lookup: Callable[[str], Tuple[Optional[str], Optional[str]]],
    today: Optional[date] = None,
    verbose: bool = True,
) -> List[WhoisRecord]:
    today = today or date.today()
    records: List[WhoisRecord] = []

    for domain in domains:
        if verbose:
            print(f"Looking up {domain}...", file=sys.stderr)
        text, error = lookup(domain)
        record = build_record(domain, text, error, today)
        if record.is_failure:
            detail = f" ({error})" if error else ""
            print(f"Warning: {record.error}{detail}", file=sys.stderr)
        records.append(record)

    return sort_records(records)


def _format_date(value: Optional[date], fmt: Optional[str] = None) -> str:
    if value is None:
        return ""
    return value.strftime(fmt) if fmt else value.isoformat()


def record_to_row(record: WhoisRecord, date_format: Optional[str] = None) -> Dict[str, object]:
    return {
        "DomainName": record.domain_name,
        "Registrar": record.registrar,
        "WhoIsServer": record.whois_server,
        "NameServers": record.name_servers,
        "DomainLock": record.domain_lock,
        "LastUpdated": _format_date(record.last_updated, date_format),
        "Created": _format_date(record.created, date_format),
        "Expiration": _format_date(record.expiration, date_format),
        "DaysLeft": record.display_days_left,
    }


def render_object_report(records: Sequence[WhoisRecord]) -> str:
    return json.dumps([record_to_row(record) for record in records], indent=2)


def use_local_date_format() -> None:
    try:
        locale.setlocale(locale.LC_TIME, "")
    except locale.Error as exc:
        print(f"Warning: using default date format ({exc})", file=sys.stderr)


def write_csv_report(path: Path, records: Sequence[WhoisRecord]) -> None:
    # %x is the active locale's short date layout.
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(RECORD_COLUMNS))
        writer.writeheader()
        writer.writerows(record_to_row(record, "%x") for record in records)


# Characters XML 1.0 cannot carry, even escaped.
XML_ILLEGAL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")


def xml_safe(value: str) -> str:
    return XML_ILLEGAL_CHARS.sub("", value)


def write_xml_report(path: Path, records: Sequence[WhoisRecord]) -> None:
    root = ET.Element("WhoisRecords")
    for record in records:
        node = ET.SubElement(root, "WhoisRecord", failure="true" if record.is_failure else "false")
        values = record_to_row(record)
        values["DaysLeft"] = "" if record.days_left is None else str(record.days_left)
        for column in RECORD_COLUMNS:
            ET.SubElement(node, column).text = xml_safe(str(values[column])) or None
        if record.error is not None:
            ET.SubElement(node, "Error").text = xml_safe(record.error)

    tree = ET.ElementTree(root)
    ET.indent(tree)
    tree.write(path, encoding="utf-8", xml_declaration=True)


def read_xml_report(path: Path) -> List[WhoisRecord]:
    """Rehydrate records written by write_xml_report."""

    def text_of(node: ET.Element, tag: str) -> str:
        child = node.find(tag)
        return (child.text or "") if child is not None else ""

    def date_of(node: ET.Element, tag: str) -> Optional[date]:
        value = text_of(node, tag)
        return date.fromisoformat(value) if value else None

    records: List[WhoisRecord] = []
    for node in ET.parse(path).getroot().iterfind("WhoisRecord"):
        days_left = text_of(node, "DaysLeft")
        records.append(
            WhoisRecord(
                domain_name=text_of(node, "DomainName"),
                registrar=text_of(node, "Registrar"),
                whois_server=text_of(node, "WhoIsServer"),
                name_servers=text_of(node, "NameServers"),
                domain_lock=text_of(node, "DomainLock"),
                last_updated=date_of(node, "LastUpdated"),
                created=date_of(node, "Created"),
                expiration=date_of(node, "Expiration"),
                days_left=int(days_left) if days_left else None,
                error=text_of(node, "Error") if node.get("failure") == "true" else None,
            )
        )
    return records


HIGHLIGHT_COLOURS: Dict[str, str] = {
    "error": "#c9b3e6",
    "red": "#f4a6a6",
    "yellow": "#fbe99a",
    "grey": "#d9d9d9",
}


def classify_record(record: WhoisRecord, thresholds: Thresholds) -> Optional[str]:
    """Return the single highlight band for a row, or None."""
    if record.is_failure:
        return "error"
    days = record.display_days_left
    if days < thresholds.red:
        return "red"
    if days < thresholds.yellow:
        return "yellow"
    if days < thresholds.grey:
        return "grey"
    return None


def render_html_report(
    records: Sequence[WhoisRecord],
    thresholds: Thresholds,
    generated_at: Optional[datetime] = None,
) -> str:
    generated_at = generated_at or datetime.now()
    stamp = generated_at.strftime("%Y-%m-%d %H:%M:%S")

    html_content = f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>WHOIS Expiration Report</title>
    <script src="{SORTTABLE_SCRIPT}"></script>
    <style>
        body {{
            font-family: Arial, sans-serif;
            color: #333;
            font-size: 10pt;
        }}
        table {{
            border-collapse: collapse;
            width: 100%;
            margin: 15px 0;
        }}
        th, td {{
            border: 1px solid #ddd;
            padding: 6px;
            text-align: left;
        }}
        th {{
            background-color: #f2f2f2;
            cursor: pointer;
        }}
        .legend td {{ border: none; padding: 4px 8px; }}
        .swatch {{ width: 24px; }}
    </style>
</head>
<body>
    <h1>WHOIS Expiration Report</h1>
    <table class="sortable">
        <thead>
            <tr>"""

    for column in RECORD_COLUMNS:
        html_content += f"""
                <th>{column}</th>"""

    html_content += """
            </tr>
        </thead>
        <tbody>"""

    for record in records:
        band = classify_record(record, thresholds)
        row_attrs = ""
        if band is not None:
            row_attrs = f' class="band-{band}" style="background-color: {HIGHLIGHT_COLOURS[band]};"'
        cells = "".join(
            f"<td>{html.escape(str(value))}</td>" for value in record_to_row(record).values()
        )
        html_content += f"""
            <tr{row_attrs}>{cells}</tr>"""

    legend = [
        ("error", "WHOIS lookup failed (DaysLeft shown as 0)"),
        ("red", f"Expires in fewer than {thresholds.red} days"),
        ("yellow", f"Expires in fewer than {thresholds.yellow} days"),
        ("grey", f"Expires in fewer than {thresholds.grey} days"),
    ]

    html_content += """
        </tbody>
    </table>

    <h2>Legend</h2>
    <table class="legend">"""

    for band, description in legend:
        html_content += f"""
        <tr><td class="swatch" style="background-color: {HIGHLIGHT_COLOURS[band]};"></td><td>{html.escape(description)}</td></tr>"""

    html_content += f"""
    </table>
    <p><em>Report generated: {stamp}</em></p>
</body>
</html>"""

    return html_content


def write_html_report(
    path: Path,
    records: Sequence[WhoisRecord],
    thresholds: Thresholds,
    generated_at: Optional[datetime] = None,
) -> None:
    path.write_text(render_html_report(records, thresholds, generated_at), encoding="utf-8")


def generate_report(
    domains: Sequence[str],
    output_kind: str = "object",
    output_dir: Optional[str] = None,
    thresholds: Thresholds = Thresholds(),
    service_url: str = DEFAULT_SERVICE_URL,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    session: Optional[requests.Session] = None,
    today: Optional[date] = None,
    verbose: bool = True,
) -> Tuple[List[WhoisRecord], Optional[Path]]:
    """Look up every domain and render the requested report.

    Returns the sorted records and the path of the written report file
    (None for the ``object`` kind, which writes nothing).
    """
    if output_kind not in OUTPUT_KINDS:
        raise ConfigurationError(f"Unknown output kind: {output_kind}")
    directory = resolve_output_dir(output_dir)

    with (nullcontext(session) if session is not None else requests.Session()) as active:
        records = collect_records(
            domains,
            lambda domain: fetch_whois_text(active, domain, service_url, timeout),
            today=today,
            verbose=verbose,
        )

    if output_kind == "object":
        return records, None

    report_path = directory / REPORT_FILENAMES[output_kind]
    if output_kind == "csv":
        # Only after extraction: registry month names are English.
        use_local_date_format()
        write_csv_report(report_path, records)
    elif output_kind == "xml":
        write_xml_report(report_path, records)
    else:
        write_html_report(report_path, records, thresholds)
    return records, report_path


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Report WHOIS registration details and expiration countdowns for domains."
    )
    parser.add_argument(
        "domains",
        nargs="*",
        help="Domains to look up; '-' reads one domain per line from standard input",
    )
    parser.add_argument(
        "-i",
        "--input",
        help="File containing domains, one per line ('#' starts a comment)",
    )
    parser.add_argument(
        "-f",
        "--format",
        choices=OUTPUT_KINDS,
        default="object",
        help="Report kind to produce (default: %(default)s)",
    )
    parser.add_argument(
        "-o",
        "--output-dir",
        default="",
        help="Existing directory for report files (default: current directory)",
    )
    parser.add_argument(
        "--red",
        type=int,
        default=Thresholds.red,
        help="Highlight red below this many days left (default: %(default)s)",
    )
    parser.add_argument(
        "--yellow",
        type=int,
        default=Thresholds.yellow,
        help="Highlight yellow below this many days left (default: %(default)s)",
    )
    parser.add_argument(
        "--grey",
        type=int,
        default=Thresholds.grey,
        help="Highlight grey below this many days left (default: %(default)s)",
    )
    parser.add_argument(
        "--service-url",
        default=os.environ.get("WHOIS_SERVICE_URL", DEFAULT_SERVICE_URL),
        help="WHOIS web service endpoint (default: %(default)s, or $WHOIS_SERVICE_URL)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help="Timeout (seconds) for each WHOIS request (default: %(default)s)",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress progress messages (warnings are still shown)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    try:
        output_dir = resolve_output_dir(args.output_dir)
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    try:
        domains = gather_domains(
            args.domains, Path(args.input).expanduser() if args.input else None
        )
    except FileNotFoundError as exc:
        print(exc, file=sys.stderr)
        return 1

    if not domains:
        print("No domains given. Nothing to do.", file=sys.stderr)
        return 0

    thresholds = Thresholds(red=args.red, yellow=args.yellow, grey=args.grey)
    if not thresholds.is_ordered:
        print(
            f"Warning: thresholds are not increasing (red={thresholds.red}, "
            f"yellow={thresholds.yellow}, grey={thresholds.grey}); red is checked first.",
            file=sys.stderr,
        )

    records, report_path = generate_report(
        domains,
        output_kind=args.format,
        output_dir=str(output_dir),
        thresholds=thresholds,
        service_url=args.service_url,
        timeout=args.timeout,
        verbose=not args.quiet,
    )

    if report_path is None:
        print(render_object_report(records))

    failures = sum(1 for record in records if record.is_failure)
    if not args.quiet:
        print(f"Looked up {len(records)} domain(s), {failures} failed.", file=sys.stderr)
        if report_path is not None:
            print(f"Report written to: {report_path}", file=sys.stderr)

    return 0


if __name__ == "__main__":
    sys.exit(main())
