from __future__ import annotations

import locale
from datetime import date, timedelta
from typing import Dict, List, Optional, Union

import pytest
import requests


TODAY = date(2024, 3, 1)


def whois_text(domain: str, expiration: date, status: str = "clientTransferProhibited") -> str:
    return (
        "\n"
        "Whois Server Version 2.0\n"
        "\n"
        f"   Domain Name: {domain.upper()}\n"
        "   Registrar: EXAMPLE REGISTRAR, LLC\n"
        "   Whois Server: whois.example-registrar.com\n"
        "   Referral URL: http://www.example-registrar.com\n"
        "   Name Server: NS1.EXAMPLE.NET\n"
        "   Name Server: NS2.EXAMPLE.NET\n"
        f"   Status: {status}\n"
        "   Updated Date: 2023-06-15\n"
        "   Creation Date: 1999-01-20\n"
        f"   Expiration Date: {expiration.isoformat()}\n"
        "\n>>> Last update of whois database: 2024-03-01T00:00:00Z <<<\n"
    )


def asmx_envelope(text: str) -> str:
    escaped = text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        f'<string xmlns="http://www.webservicex.net">{escaped}</string>'
    )


class FakeResponse:
    def __init__(self, text: str, status_code: int = 200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")


class FakeSession:
    """Stands in for requests.Session, answering by HostName parameter."""

    def __init__(self, answers: Dict[str, Union[str, FakeResponse, Exception]]):
        self.answers = answers
        self.calls: List[Dict[str, Optional[object]]] = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        answer = self.answers[params["HostName"]]
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, FakeResponse):
            return answer
        return FakeResponse(asmx_envelope(answer))


@pytest.fixture(autouse=True)
def restore_time_locale():
    saved = locale.setlocale(locale.LC_TIME)
    yield
    locale.setlocale(locale.LC_TIME, saved)


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def scenario_session() -> FakeSession:
    return FakeSession(
        {
            "example.com": whois_text("example.com", TODAY + timedelta(days=45)),
            "nosuchdomain-xyz.invalid": "No match for nosuchdomain-xyz.invalid.\n",
        }
    )
