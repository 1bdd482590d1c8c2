"""Parsing of tab separated capital gains reports."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Iterator, TextIO

DEFAULT_DATE_FORMAT = "%m/%d/%y"
RECORD_FORMAT = "TSV"
SOURCE_FORMAT = "TXF"
FIELD_COUNT = 8

MESSAGES = {
    "invalidRecord": "Invalid {format} record at line {line}",
    "importFailed": "Import failed reading {format} file after line {line}",
}


class CapitalGainError(Exception):
    """Raised when a capital gains report cannot be imported."""

    message_key = "importFailed"

    def __init__(self, format_label: str, line_number: int) -> None:
        self.format_label = format_label
        self.line_number = line_number
        super().__init__(MESSAGES[self.message_key].format(format=format_label, line=line_number))

    @property
    def message_args(self) -> tuple[str, int]:
        return self.format_label, self.line_number


class InvalidRecordError(CapitalGainError):
    """A data line does not have the structure of a capital gains record."""

    message_key = "invalidRecord"


class ImportFailedError(CapitalGainError):
    """The report could not be read."""

    message_key = "importFailed"


@dataclass(frozen=True, slots=True)
class CapitalGainRecord:
    """One realized gain line: ``shares`` bought on ``purchase_date`` sold on ``sale_date``."""

    line_number: int
    security_name: str
    shares: Decimal
    purchase_date: date
    sale_date: date
    sale_amount: Decimal
    cost_basis: Decimal
    gain_loss: Decimal = field(compare=False)

    @classmethod
    def from_fields(
        cls,
        line_number: int,
        fields: list[str],
        date_format: str = DEFAULT_DATE_FORMAT,
    ) -> CapitalGainRecord:
        if len(fields) != FIELD_COUNT:
            raise InvalidRecordError(RECORD_FORMAT, line_number)
        _marker, security, shares, bought, sold, sales_price, cost_basis, gain_loss = fields
        security = security.strip()
        if not security:
            raise InvalidRecordError(RECORD_FORMAT, line_number)
        return cls(
            line_number=line_number,
            security_name=security,
            shares=_parse_number(shares, line_number),
            purchase_date=_parse_date(bought, line_number, date_format),
            sale_date=_parse_date(sold, line_number, date_format),
            sale_amount=_parse_number(sales_price, line_number),
            cost_basis=_parse_number(cost_basis, line_number),
            gain_loss=_parse_number(gain_loss, line_number),
        )


def _parse_number(value: str, line_number: int) -> Decimal:
    try:
        return Decimal(value.strip().replace(",", ""))
    except InvalidOperation as exc:
        raise InvalidRecordError(RECORD_FORMAT, line_number) from exc


def _parse_date(value: str, line_number: int, date_format: str) -> date:
    try:
        return datetime.strptime(value.strip(), date_format).date()
    except ValueError as exc:
        raise InvalidRecordError(RECORD_FORMAT, line_number) from exc


class CapitalGainReader:
    """Reads records from a report, skipping the header and tab-led filler lines."""

    def __init__(self, stream: TextIO, date_format: str = DEFAULT_DATE_FORMAT) -> None:
        self.stream = stream
        self.date_format = date_format
        self.line_number = 0
        self.header: list[str] = []

    def _next_line(self) -> str | None:
        while True:
            line = self.stream.readline()
            if not line:
                return None
            self.line_number += 1
            line = line.rstrip("\r\n")
            if line and not line.startswith("\t"):
                return line

    def read_header(self) -> list[str]:
        line = self._next_line()
        self.header = line.split("\t") if line is not None else []
        return self.header

    def records(self) -> Iterator[CapitalGainRecord]:
        if not self.header:
            self.read_header()
        while (line := self._next_line()) is not None:
            yield CapitalGainRecord.from_fields(self.line_number, line.split("\t"), self.date_format)


__all__ = [
    "DEFAULT_DATE_FORMAT",
    "FIELD_COUNT",
    "CapitalGainError",
    "InvalidRecordError",
    "ImportFailedError",
    "CapitalGainRecord",
    "CapitalGainReader",
]
