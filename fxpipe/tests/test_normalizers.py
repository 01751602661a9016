"""Source normalizer tests"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import CAPTURED_AT, reuters_payload, vcb_payload, xe_payload, yahoo_payload
from fxpipe.core.errors import MalformedPayload, SymbolDecodeError
from fxpipe.normalizers import (
    ReutersNormalizer,
    VcbNormalizer,
    XeNormalizer,
    YahooNormalizer,
    decode_symbol,
    get_normalizer,
)
from fxpipe.schemas.ticks import institution_quote, synthesize_spread


class TestSpreadSynthesis:
    """Test bid/ask derivation rules"""

    def test_synthesized_spread_orders_bid_mid_ask(self):
        for mid in (Decimal("0.0123"), Decimal("1.0842"), Decimal("25380"), Decimal("161.25")):
            bid, ask = synthesize_spread(mid, Decimal("0.0001"))
            assert bid < mid < ask
            assert ask - bid == mid * Decimal("0.0001")

    def test_institution_quote_uses_transfer_as_mid(self):
        assert institution_quote(Decimal("1"), Decimal("2"), Decimal("3")) == (Decimal("1"), Decimal("2"), Decimal("3"))

    def test_institution_quote_transfer_fills_missing_side(self):
        assert institution_quote(None, Decimal("2"), Decimal("3")) == (Decimal("2"), Decimal("2"), Decimal("3"))

    def test_institution_quote_falls_back_to_average(self):
        assert institution_quote(Decimal("2"), None, Decimal("4")) == (Decimal("2"), Decimal("3"), Decimal("4"))

    def test_institution_quote_without_any_rate(self):
        assert institution_quote(None, None, None) is None


class TestSymbolDecode:
    """Test provider symbol decoding"""

    def test_three_letter_symbol_implies_usd_base(self):
        assert decode_symbol("VND=X") == ("USD", "VND")

    def test_six_letter_symbol(self):
        assert decode_symbol("EURUSD=X") == ("EUR", "USD")

    def test_trailing_equals(self):
        assert decode_symbol("EUR=") == ("USD", "EUR")

    @pytest.mark.parametrize("symbol", ["", "VN=X", "EURUS=X", "EURUSDX=X"])
    def test_other_lengths_fail(self, symbol):
        with pytest.raises(SymbolDecodeError):
            decode_symbol(symbol)

    def test_decode_error_is_malformed_payload(self):
        assert issubclass(SymbolDecodeError, MalformedPayload)


class TestVcbNormalizer:
    """Test VietcomBank rate sheet normalization"""

    @pytest.fixture
    def normalizer(self):
        return VcbNormalizer(timezone_name="Asia/Ho_Chi_Minh")

    def test_sheet_yields_one_tick_and_skips_unquoted_row(self, normalizer):
        result = normalizer.normalize(vcb_payload(), CAPTURED_AT)

        assert result.skipped == 1
        assert len(result.candidates) == 1
        tick = result.candidates[0]
        assert (tick.base_currency, tick.quote_currency) == ("USD", "VND")
        assert tick.time == datetime(2026, 1, 29, 2, 25, 44, tzinfo=timezone.utc)
        assert (tick.bid, tick.mid, tick.ask) == (Decimal("25350.00"), Decimal("25380.00"), Decimal("25410.00"))
        assert tick.volume is None

    def test_single_row_object_is_accepted(self, normalizer):
        payload = vcb_payload()
        payload["ExrateList"]["Exrate"] = payload["ExrateList"]["Exrate"][0]
        result = normalizer.normalize(payload, CAPTURED_AT)
        assert len(result.candidates) == 1

    def test_missing_datetime_is_malformed(self, normalizer):
        payload = vcb_payload()
        del payload["ExrateList"]["DateTime"]
        with pytest.raises(MalformedPayload):
            normalizer.normalize(payload, CAPTURED_AT)

    def test_sheet_without_any_quote_is_malformed(self, normalizer):
        payload = vcb_payload()
        payload["ExrateList"]["Exrate"] = payload["ExrateList"]["Exrate"][1:]
        with pytest.raises(MalformedPayload):
            normalizer.normalize(payload, CAPTURED_AT)

    def test_pm_time_is_converted(self, normalizer):
        assert normalizer.parse_sheet_time("12/31/2025 11:05:00 PM") == datetime(2025, 12, 31, 16, 5, tzinfo=timezone.utc)


class TestXeNormalizer:
    """Test XE chart normalization"""

    def test_zero_sample_is_skipped(self):
        result = XeNormalizer().normalize(xe_payload(), CAPTURED_AT)

        assert len(result.candidates) == 2
        assert result.skipped == 1
        start = datetime(2026, 1, 29, tzinfo=timezone.utc)
        assert [t.time for t in result.candidates] == [start, start + timedelta(minutes=2)]
        assert result.candidates[1].mid == Decimal("25381.25")

    def test_below_floor_and_null_samples_are_skipped(self):
        result = XeNormalizer().normalize(xe_payload(rates=[None, 0.009, 1.08]), CAPTURED_AT)
        assert len(result.candidates) == 1
        assert result.skipped == 2

    def test_midmarket_adds_tick_at_capture_time(self):
        result = XeNormalizer().normalize(xe_payload(midmarket=25382.0), CAPTURED_AT)
        assert len(result.candidates) == 3
        assert result.candidates[-1].time == CAPTURED_AT
        assert result.candidates[-1].mid == Decimal("25382.0")

    def test_missing_currencies_is_malformed(self):
        payload = xe_payload()
        del payload["toCurrency"]
        with pytest.raises(MalformedPayload):
            XeNormalizer().normalize(payload, CAPTURED_AT)

    def test_spread_is_configurable(self):
        result = XeNormalizer(spread=Decimal("0.002")).normalize(xe_payload(rates=[100]), CAPTURED_AT)
        tick = result.candidates[0]
        assert (tick.bid, tick.ask) == (Decimal("99.9"), Decimal("100.1"))


class TestYahooNormalizer:
    """Test Yahoo chart normalization"""

    def test_mid_fallbacks_and_volume(self):
        result = YahooNormalizer().normalize(yahoo_payload(), CAPTURED_AT)

        assert result.skipped == 1
        first, second = result.candidates
        assert (first.base_currency, first.quote_currency) == ("USD", "VND")
        assert first.mid == Decimal("25350.0")
        assert first.volume is None
        assert second.mid == Decimal("25310.0")
        assert second.volume == Decimal("12")
        assert first.time == datetime(2026, 1, 28, tzinfo=timezone.utc)

    def test_high_low_average_when_no_open_or_close(self):
        payload = yahoo_payload()
        quote = payload["chart"]["result"][0]["indicators"]["quote"][0]
        quote["close"] = [None, None, None]
        quote["open"] = [None, None, None]
        result = YahooNormalizer().normalize(payload, CAPTURED_AT)
        assert result.candidates[0].mid == Decimal("25300")

    def test_empty_result_is_malformed(self):
        with pytest.raises(MalformedPayload):
            YahooNormalizer().normalize({"chart": {"result": []}}, CAPTURED_AT)

    def test_bad_symbol_is_malformed(self):
        with pytest.raises(SymbolDecodeError):
            YahooNormalizer().normalize(yahoo_payload(symbol="ABCD=X"), CAPTURED_AT)

    def test_out_of_range_timestamp_is_skipped(self):
        payload = yahoo_payload()
        payload["chart"]["result"][0]["timestamp"][0] = 10**20
        result = YahooNormalizer().normalize(payload, CAPTURED_AT)

        assert result.skipped == 2
        (tick,) = result.candidates
        assert tick.mid == Decimal("25310.0")


class TestReutersNormalizer:
    """Test Reuters quote normalization"""

    def test_last_and_backdated_open(self):
        result = ReutersNormalizer().normalize(reuters_payload(), CAPTURED_AT)

        last, open_ = result.candidates
        assert last.time == datetime(2026, 1, 29, 2, 29, tzinfo=timezone.utc)
        assert last.mid == Decimal("25390.0")
        assert open_.time == last.time - timedelta(hours=1)
        assert open_.mid == Decimal("25370.0")

    def test_open_equal_to_last_adds_no_tick(self):
        result = ReutersNormalizer().normalize(reuters_payload(open_=25390.0), CAPTURED_AT)
        assert len(result.candidates) == 1

    def test_unwrapped_elements_are_accepted(self):
        result = ReutersNormalizer().normalize(reuters_payload()["data"], CAPTURED_AT)
        assert len(result.candidates) == 2

    def test_no_price_is_malformed(self):
        with pytest.raises(MalformedPayload):
            ReutersNormalizer().normalize(reuters_payload(last=None, open_=None), CAPTURED_AT)

    def test_missing_xref_is_malformed(self):
        payload = reuters_payload()
        payload["data"]["elements"] = payload["data"]["elements"][1:]
        with pytest.raises(MalformedPayload):
            ReutersNormalizer().normalize(payload, CAPTURED_AT)

    @pytest.mark.parametrize("date", [None, "yesterday"])
    def test_trade_without_usable_date_is_malformed(self, date):
        payload = reuters_payload()
        trade = payload["data"]["elements"][1]["data"]["lastTrade"]
        if date is None:
            del trade["date"]
        else:
            trade["date"] = date
        with pytest.raises(MalformedPayload):
            ReutersNormalizer().normalize(payload, CAPTURED_AT)


def test_unknown_source_is_rejected():
    with pytest.raises(ValueError):
        get_normalizer("bloomberg")
