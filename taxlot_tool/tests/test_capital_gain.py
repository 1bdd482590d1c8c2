import io
from datetime import date
from decimal import Decimal

import pytest

from conftest import report
from taxlot_tool.core.capital_gain import (
    CapitalGainReader,
    CapitalGainRecord,
    InvalidRecordError,
)


def read(text: str, date_format: str = "%m/%d/%y") -> list[CapitalGainRecord]:
    return list(CapitalGainReader(io.StringIO(text), date_format).records())


def test_reader_parses_records():
    records = read(report("X\tSecurity 1\t1,015.500\t01/20/00\t02/28/05\t1,150.00\t75.00\t1,075.00"))

    assert records == [
        CapitalGainRecord(
            line_number=2,
            security_name="Security 1",
            shares=Decimal("1015.500"),
            purchase_date=date(2000, 1, 20),
            sale_date=date(2005, 2, 28),
            sale_amount=Decimal("1150.00"),
            cost_basis=Decimal("75.00"),
            gain_loss=Decimal("1075.00"),
        )
    ]


def test_reader_skips_header_blank_and_tab_led_lines():
    text = report(
        "",
        "\tsubtotal\t\t\t\t\t\t",
        "X\tSecurity 1\t5.000\t01/20/01\t02/28/05\t50.00\t50.00\t0.00",
    )
    reader = CapitalGainReader(io.StringIO(text.replace("\n", "\r\n")))

    records = list(reader.records())

    assert reader.header[:2] == ["Acct", "Security"]
    assert [record.line_number for record in records] == [4]
    assert records[0].shares == Decimal("5.000")


def test_reader_honours_date_format():
    records = read(report("X\tAcme\t1\t2000-01-20\t2005-02-28\t10\t5\t5"), "%Y-%m-%d")
    assert records[0].purchase_date == date(2000, 1, 20)


def test_gain_loss_is_not_part_of_record_identity():
    base = dict(
        line_number=2,
        security_name="Acme",
        shares=Decimal("1"),
        purchase_date=date(2000, 1, 1),
        sale_date=date(2001, 1, 1),
        sale_amount=Decimal("10"),
        cost_basis=Decimal("5"),
    )
    assert CapitalGainRecord(gain_loss=Decimal("5"), **base) == CapitalGainRecord(gain_loss=Decimal("0"), **base)


@pytest.mark.parametrize(
    "row",
    [
        "X\tSecurity 1\t5.000\t01/20/01\t02/28/05\t50.00\t50.00",
        "X\t \t5.000\t01/20/01\t02/28/05\t50.00\t50.00\t0.00",
        "X\tSecurity 1\tfive\t01/20/01\t02/28/05\t50.00\t50.00\t0.00",
        "X\tSecurity 1\t5.000\t13/45/01\t02/28/05\t50.00\t50.00\t0.00",
        "X\tSecurity 1\t5.000\t01/20/01\t02/28/05\t50.00\t50.00\tn/a",
    ],
)
def test_malformed_rows_raise_invalid_record(row):
    text = report("X\tSecurity 1\t5.000\t01/20/01\t02/28/05\t50.00\t50.00\t0.00", row)
    with pytest.raises(InvalidRecordError) as excinfo:
        read(text)

    assert excinfo.value.message_args == ("TSV", 3)
    assert str(excinfo.value) == "Invalid TSV record at line 3"


def test_records_are_read_lazily():
    text = report("X\tSecurity 1\t5.000\t01/20/01\t02/28/05\t50.00\t50.00\t0.00", "garbage")
    records = CapitalGainReader(io.StringIO(text)).records()

    assert next(records).line_number == 2
    with pytest.raises(InvalidRecordError):
        next(records)
