"""Tests for the in-memory Bradesco client."""

from datetime import date

import pytest

from imobly.bradesco.fake import FakeBradescoApiClient, parse_amount
from imobly.domain.boletos import BoletoStatus, resolve_internal_status


@pytest.fixture
def fake():
    return FakeBradescoApiClient()


class TestFakeIssue:
    def test_issue_is_deterministic(self, fake):
        payload = {"nuTitulo": "00020260042", "vlNominalTitulo": "985.50", "dtVencimentoTitulo": "05.11.2026"}

        first = fake.issue_boleto(payload)
        second = FakeBradescoApiClient().issue_boleto(payload)

        assert first["nossoNumero"] == second["nossoNumero"] == "00020260042"
        assert first["linhaDigitavel"] == second["linhaDigitavel"]
        assert len(first["linhaDigitavel"]) == 47
        assert len(first["codigoBarras"]) == 44
        assert first["vencimento"] == "2026-11-05"
        assert first["valor"] == 985.5
        assert resolve_internal_status(first["status"]) is BoletoStatus.REGISTERED

    def test_issue_without_title_number_uses_sequence(self, fake):
        response = fake.issue_boleto({"vlNominalTitulo": "10.00"})
        assert response["nuTitulo"] == "00000000001"

    def test_get_unknown_is_registered(self, fake):
        assert fake.get_boleto("999")["status"] == "registered"


class TestFakeLifecycle:
    def test_settle_then_query_reports_paid(self, fake):
        fake.issue_boleto({"nuTitulo": "00000000123", "vlNominalTitulo": "50.00"})
        fake.settle("123", paid_on=date(2026, 11, 1))

        response = fake.get_boleto("00000000123")
        assert resolve_internal_status(response["status"]) is BoletoStatus.PAID
        assert response["valorPago"] == 50.0
        assert response["dataPagamento"] == "2026-11-01"

    def test_settle_unknown_raises(self, fake):
        with pytest.raises(KeyError):
            fake.settle("404")

    def test_cancel_reports_cancelled(self, fake):
        fake.issue_boleto({"nuTitulo": "00000000123", "vlNominalTitulo": "50.00"})
        response = fake.cancel_boleto({"nuTitulo": "00000000123", "motivo": "acordo"})

        assert resolve_internal_status(response["status"]) is BoletoStatus.CANCELLED
        assert response["motivoCancelamento"] == "acordo"

    def test_pdf_bytes(self, fake):
        assert fake.download_boleto_pdf("123").startswith(b"%PDF")

    def test_refresh_token(self, fake):
        config = fake.refresh_access_token()
        assert config.access_token == "fake-access-token"
        assert not config.should_refresh_token()


class TestParseAmount:
    @pytest.mark.parametrize(
        "value,expected",
        [("1.500,75", 1500.75), ("1500.75", 1500.75), (12, 12.0), ("abc", 0.0), (None, 0.0)],
    )
    def test_parse(self, value, expected):
        assert parse_amount(value) == expected
