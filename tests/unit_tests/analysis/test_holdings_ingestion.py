import textwrap

import pytest

from second_order.core.errors import HoldingsParseError
from second_order.services.holdings_ingestion import (
    parse_holdings_csv,
    parse_header_date,
    parse_numeric,
)


def csv_text(body):
    return textwrap.dedent(body).strip()


def test_basic_weights_and_defaults():
    holdings = parse_holdings_csv(csv_text("""
        Name,Ticker,Weight,Sensitivity,Constraint,Tags
        Alpha Fund,ALPH,60%,high,locked,"rates|energy; tech"
        Beta Trust,BETA,0.4,,,
    """))

    alpha, beta = holdings
    assert alpha.weight == pytest.approx(0.6)
    assert alpha.sensitivity == "HIGH"
    assert alpha.constraint == "LOCKED"
    assert alpha.exposure_tags == ["rates", "energy", "tech"]
    assert beta.weight == pytest.approx(0.4)
    assert beta.sensitivity == "MED"
    assert beta.constraint == "FREE"
    assert beta.purpose == "LONG_TERM_GROWTH"


def test_header_found_below_preamble():
    holdings = parse_holdings_csv(csv_text("""
        Portfolio export,generated 2025
        ,
        Holding Name,Symbol,Allocation
        Alpha Fund,ALPH,50
        Beta Trust,BETA,50
    """))
    assert [h.name for h in holdings] == ["Alpha Fund", "Beta Trust"]
    assert [h.ticker for h in holdings] == ["ALPH", "BETA"]
    assert [h.weight for h in holdings] == [pytest.approx(0.5), pytest.approx(0.5)]


def test_amounts_derive_weights():
    """No weight column: weights are amount share rounded to 6 dp."""
    holdings = parse_holdings_csv(csv_text("""
        name,value
        Alpha Fund,"£1,000"
        Beta Trust,$2000
        Gamma Cash,0
    """))
    assert holdings[0].weight == round(1000 / 3000, 6)
    assert holdings[1].weight == round(2000 / 3000, 6)
    assert holdings[2].weight is None


def test_latest_date_column_preferred_as_amount():
    holdings = parse_holdings_csv(csv_text("""
        Asset Name,31/12/2024,31/03/2025,Amount
        Alpha Fund,100,300,999
        Beta Trust,100,100,1
    """))
    assert holdings[0].weight == pytest.approx(0.75)
    assert holdings[1].weight == pytest.approx(0.25)


def test_summary_sentinel_truncates_table():
    holdings = parse_holdings_csv(csv_text("""
        name,weight
        Alpha Fund,0.5
        Beta Trust,0.5
        Summary,
        Ignored Fund,0.9
    """))
    assert [h.name for h in holdings] == ["Alpha Fund", "Beta Trust"]


def test_pivot_bucket_sentinel_truncates_table():
    holdings = parse_holdings_csv(csv_text("""
        name,amount
        Alpha Fund,100
        Bucket,Sum of Amount
        Growth,100
    """))
    assert [h.name for h in holdings] == ["Alpha Fund"]


def test_grand_total_sentinel():
    holdings = parse_holdings_csv(csv_text("""
        name,weight
        Alpha Fund,1
        Grand Total,1
    """))
    assert len(holdings) == 1


def test_all_zero_amounts_leave_weights_unset():
    """No positive amount: holdings come back unweighted for equal weighting."""
    holdings = parse_holdings_csv(csv_text("""
        name,amount
        Alpha Fund,0
        Beta Trust,0
    """))
    assert [h.name for h in holdings] == ["Alpha Fund", "Beta Trust"]
    assert all(h.weight is None for h in holdings)


def test_empty_csv_is_fatal():
    with pytest.raises(HoldingsParseError, match="empty"):
        parse_holdings_csv("   \n  ")


def test_missing_name_column_is_fatal():
    with pytest.raises(HoldingsParseError, match="name"):
        parse_holdings_csv("ticker,weight\nAAA,1")


def test_no_rows_is_fatal():
    with pytest.raises(HoldingsParseError, match="No valid holding rows"):
        parse_holdings_csv("name,weight\nSummary,")


def test_numeric_helpers():
    assert parse_numeric(" £1,234.50 ") == pytest.approx(1234.5)
    assert parse_numeric("12%") == pytest.approx(12.0)
    assert parse_numeric("n/a") is None
    assert parse_header_date("31/01/2025").month == 1
    assert parse_header_date("2025-03-31").day == 31
    assert parse_header_date("Amount") is None
