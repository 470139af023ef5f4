"""Tests for boleto issue, refresh, cancel and PDF storage."""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from helpers import RecordingDispatcher, make_settings
from imobly.bradesco.errors import BradescoTransportError
from imobly.bradesco.fake import FakeBradescoApiClient
from imobly.bradesco.gateway import (
    BradescoBoletoGateway,
    parse_amount,
    parse_bank_date,
    resolve_external_id,
)
from imobly.domain.boletos import Boleto, BoletoIssueError, BoletoStateError, BoletoStatus
from imobly.infra.storage import PdfStorage


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def gateway(store, dispatcher, tmp_path):
    settings = make_settings()
    return BradescoBoletoGateway(
        FakeBradescoApiClient(settings),
        settings,
        storage=PdfStorage(str(tmp_path), "/storage"),
        dispatcher=dispatcher,
    )


def _boleto(store, boleto_id):
    return Boleto.from_record(store.boletos[boleto_id])


class TestIssue:
    def test_issue_with_fake_client(self, gateway, store, dispatcher):
        store.add_invoice(1, valor_total=Decimal("985.50"))

        with gateway.unit_of_work() as cur:
            boleto = gateway.issue(cur, 1)

        assert boleto.status is BoletoStatus.REGISTERED
        assert boleto.nosso_numero
        assert boleto.pdf_url
        assert boleto.valor == Decimal("985.5")
        assert boleto.vencimento == date(2026, 11, 5)

        stored = store.boletos[boleto.id]
        assert "*" in stored["payload"]["nuCpfcnpjPagador"]
        assert "*" in stored["payload"]["nomePagador"]
        assert stored["payload"]["vlNominalTitulo"] == "985.50"

        invoice = store.invoices[1]
        assert invoice["nosso_numero"] == boleto.nosso_numero
        assert invoice["boleto_url"] == boleto.pdf_url
        assert invoice["metodo_pagamento"] == "Boleto"
        assert dispatcher.names() == ["BoletoRegistered"]

    def test_issue_reuses_registered_boleto(self, gateway, store, dispatcher):
        store.add_invoice(1)
        existing = store.add_boleto(1, status="registered", external_id="ext-1")
        gateway.client = MagicMock()

        with gateway.unit_of_work() as cur:
            boleto = gateway.issue(cur, 1)

        assert boleto.id == existing["id"]
        gateway.client.issue_boleto.assert_not_called()
        assert dispatcher.events == []

    def test_issue_twice_creates_one_boleto(self, gateway, store):
        store.add_invoice(1)

        with gateway.unit_of_work() as cur:
            first = gateway.issue(cur, 1)
        with gateway.unit_of_work() as cur:
            second = gateway.issue(cur, 1)

        assert first.id == second.id
        assert len(store.boletos) == 1

    def test_issue_after_cancellation_creates_new_boleto(self, gateway, store):
        store.add_invoice(1, status="Cancelada")
        store.add_boleto(1, status="cancelled", external_id="old")

        with gateway.unit_of_work() as cur:
            boleto = gateway.issue(cur, 1)

        assert boleto.id == 2
        assert store.invoices[1]["status"] == "Aberta"

    def test_issue_replaces_pending_row(self, gateway, store):
        store.add_invoice(1)
        pending = store.add_boleto(1, status="pending")

        with gateway.unit_of_work() as cur:
            boleto = gateway.issue(cur, 1)

        assert boleto.id == pending["id"]
        assert boleto.status is BoletoStatus.REGISTERED
        assert len(store.boletos) == 1

    def test_issue_unknown_invoice(self, gateway, store):
        with pytest.raises(BoletoIssueError, match="not found"):
            with gateway.unit_of_work() as cur:
                gateway.issue(cur, 99)

    def test_issue_without_payer(self, gateway, store):
        store.add_invoice(1, payer=None)
        with pytest.raises(BoletoIssueError):
            with gateway.unit_of_work() as cur:
                gateway.issue(cur, 1)
        assert store.boletos == {}

    def test_failed_issue_dispatches_nothing(self, gateway, store, dispatcher):
        store.add_invoice(1)
        gateway.client = MagicMock()
        gateway.client.issue_boleto.side_effect = BradescoTransportError("issue: timeout")

        with pytest.raises(BradescoTransportError):
            with gateway.unit_of_work() as cur:
                gateway.issue(cur, 1)

        assert dispatcher.events == []

    def test_missing_pdf_url_downloads_pdf(self, store, dispatcher, tmp_path):
        settings = make_settings(environment="production", pdf_path="boletos/bradesco")
        client = MagicMock()
        client.issue_boleto.return_value = {
            "nuTitulo": "00020260042",
            "linhaDigitavel": "23790000000000000000000000000000000000000000000",
        }
        client.download_boleto_pdf.return_value = b"%PDF-1.4"
        gateway = BradescoBoletoGateway(
            client, settings, storage=PdfStorage(str(tmp_path), "/storage"), dispatcher=dispatcher
        )
        store.add_invoice(1)

        with gateway.unit_of_work() as cur:
            boleto = gateway.issue(cur, 1)

        assert boleto.pdf_url == "/storage/boletos/bradesco/00020260042.pdf"
        assert (tmp_path / "boletos" / "bradesco" / "00020260042.pdf").read_bytes() == b"%PDF-1.4"
        assert store.invoices[1]["boleto_url"] == boleto.pdf_url
        assert boleto.vencimento == date(2026, 11, 5)
        assert boleto.valor == Decimal("985.50")

    def test_pdf_failure_does_not_fail_issue(self, store, dispatcher, tmp_path):
        client = MagicMock()
        client.issue_boleto.return_value = {"nuTitulo": "00020260042"}
        client.download_boleto_pdf.side_effect = BradescoTransportError("pdf: timeout")
        gateway = BradescoBoletoGateway(
            client,
            make_settings(environment="production"),
            storage=PdfStorage(str(tmp_path), "/storage"),
            dispatcher=dispatcher,
        )
        store.add_invoice(1)

        with gateway.unit_of_work() as cur:
            boleto = gateway.issue(cur, 1)

        assert boleto.pdf_url is None
        assert dispatcher.names() == ["BoletoRegistered"]

    def test_sandbox_pdf_url_used_when_bank_sends_none(self, store, dispatcher):
        client = MagicMock()
        client.issue_boleto.return_value = {"nuTitulo": "00020260042"}
        settings = make_settings(sandbox_pdf_url="https://sandbox.test/boleto.pdf")
        gateway = BradescoBoletoGateway(client, settings, dispatcher=dispatcher)
        store.add_invoice(1)

        with gateway.unit_of_work() as cur:
            boleto = gateway.issue(cur, 1)

        assert boleto.pdf_url == "https://sandbox.test/boleto.pdf"
        client.download_boleto_pdf.assert_not_called()

    def test_fixtures_rename_cancelled_duplicates(self, store, dispatcher):
        store.add_invoice(1)
        old = store.add_boleto(1, status="cancelled", external_id="00020260042")
        settings = make_settings(sandbox_use_fixtures=True)
        gateway = BradescoBoletoGateway(FakeBradescoApiClient(settings), settings, dispatcher=dispatcher)

        with gateway.unit_of_work() as cur:
            boleto = gateway.issue(cur, 1)

        assert store.boletos[old["id"]]["external_id"] == f"00020260042#{old['id']}"
        assert boleto.external_id == "00020260042"


class TestRefreshStatus:
    def test_registered_to_paid(self, gateway, store):
        store.add_invoice(1)
        row = store.add_boleto(1, external_id="ext-1", nosso_numero="00000000001")
        gateway.client = MagicMock()
        gateway.client.get_boleto.return_value = {
            "titulo": {"status": "LIQUIDADO", "vlrPagto": "985,50", "dtPagto": "01112026"}
        }

        with gateway.unit_of_work() as cur:
            refreshed = gateway.refresh_status(cur, _boleto(store, row["id"]))

        gateway.client.get_boleto.assert_called_once_with("00000000001")
        assert refreshed.status is BoletoStatus.PAID
        assert refreshed.valor_pago == Decimal("985.50")
        assert refreshed.liquidado_em == datetime(2026, 11, 1)
        assert refreshed.last_synced_at is not None

    def test_paid_without_amount_uses_boleto_value(self, gateway, store):
        store.add_invoice(1)
        row = store.add_boleto(1, external_id="ext-1", valor=Decimal("985.50"))
        gateway.client = MagicMock()
        gateway.client.get_boleto.return_value = {"status": "pago"}

        with gateway.unit_of_work() as cur:
            refreshed = gateway.refresh_status(cur, _boleto(store, row["id"]))

        assert refreshed.valor_pago == Decimal("985.50")
        assert refreshed.liquidado_em == refreshed.last_synced_at

    def test_paid_boleto_keeps_settlement(self, gateway, store):
        store.add_invoice(1)
        paid_at = datetime(2026, 11, 1, tzinfo=timezone.utc)
        row = store.add_boleto(
            1,
            status="paid",
            external_id="ext-1",
            valor_pago=Decimal("985.50"),
            liquidado_em=paid_at,
            pdf_url="https://bank/old.pdf",
        )
        gateway.client = MagicMock()
        gateway.client.get_boleto.return_value = {"status": "baixado", "urlPdf": "https://bank/new.pdf"}

        with gateway.unit_of_work() as cur:
            refreshed = gateway.refresh_status(cur, _boleto(store, row["id"]))

        assert refreshed.status is BoletoStatus.PAID
        assert refreshed.valor_pago == Decimal("985.50")
        assert refreshed.liquidado_em == paid_at
        assert refreshed.pdf_url == "https://bank/old.pdf"
        assert refreshed.last_synced_at is not None
        assert refreshed.response_payload == {"status": "baixado", "urlPdf": "https://bank/new.pdf"}

    def test_open_boleto_takes_new_references(self, gateway, store):
        store.add_invoice(1)
        row = store.add_boleto(1, external_id="ext-1")
        gateway.client = MagicMock()
        gateway.client.get_boleto.return_value = {"status": "registrado", "urlPdf": "https://bank/pdf"}

        with gateway.unit_of_work() as cur:
            refreshed = gateway.refresh_status(cur, _boleto(store, row["id"]))

        assert refreshed.status is BoletoStatus.REGISTERED
        assert refreshed.pdf_url == "https://bank/pdf"

    def test_no_reference_skips_bank(self, gateway, store):
        store.add_invoice(1)
        row = store.add_boleto(1, external_id=None, nosso_numero=None)
        gateway.client = MagicMock()

        with gateway.unit_of_work() as cur:
            refreshed = gateway.refresh_status(cur, _boleto(store, row["id"]))

        gateway.client.get_boleto.assert_not_called()
        assert refreshed == _boleto(store, row["id"])

    def test_reconcile_fans_out_to_invoice(self, gateway, store, dispatcher):
        store.add_invoice(1)
        row = store.add_boleto(1, external_id="ext-1")
        gateway.client = MagicMock()
        gateway.client.get_boleto.return_value = {"status": "liquidado", "valorPago": 985.5}

        with gateway.unit_of_work() as cur:
            gateway.reconcile(cur, _boleto(store, row["id"]))

        assert store.invoices[1]["status"] == "Paga"
        assert dispatcher.names() == ["BoletoPaid"]


class TestCancel:
    def test_cancel_paid_raises(self, gateway, store):
        store.add_invoice(1)
        row = store.add_boleto(1, status="paid", external_id="ext-1")

        with pytest.raises(BoletoStateError):
            with gateway.unit_of_work() as cur:
                gateway.cancel(cur, _boleto(store, row["id"]))

        assert store.boletos[row["id"]]["status"] == "paid"

    def test_cancel_registered(self, gateway, store, dispatcher):
        store.add_invoice(1)
        row = store.add_boleto(1, external_id="ext-1")
        gateway.client = MagicMock()
        gateway.client.cancel_boleto.return_value = {"status": "baixado"}

        with gateway.unit_of_work() as cur:
            cancelled = gateway.cancel(cur, _boleto(store, row["id"]), reason="acordo")

        gateway.client.cancel_boleto.assert_called_once_with({"nuTitulo": "ext-1", "motivo": "acordo"})
        assert cancelled.status is BoletoStatus.CANCELLED
        assert store.invoices[1]["status"] == "Cancelada"
        assert store.transaction_updates[-1]["status"] == "cancelado"
        assert dispatcher.names() == ["BoletoCanceled"]

    def test_cancel_without_bank_reference_is_local(self, gateway, store):
        store.add_invoice(1)
        row = store.add_boleto(1, status="pending", external_id=None)
        gateway.client = MagicMock()

        with gateway.unit_of_work() as cur:
            cancelled = gateway.cancel(cur, _boleto(store, row["id"]))

        gateway.client.cancel_boleto.assert_not_called()
        assert cancelled.status is BoletoStatus.CANCELLED

    def test_cancel_cancelled_is_noop(self, gateway, store, dispatcher):
        store.add_invoice(1)
        row = store.add_boleto(1, status="cancelled", external_id="ext-1")
        gateway.client = MagicMock()

        with gateway.unit_of_work() as cur:
            result = gateway.cancel(cur, _boleto(store, row["id"]))

        assert result.status is BoletoStatus.CANCELLED
        gateway.client.cancel_boleto.assert_not_called()
        assert dispatcher.events == []


class TestParsing:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("01112026", datetime(2026, 11, 1)),
            ("01/11/2026", datetime(2026, 11, 1)),
            ("01.11.2026", datetime(2026, 11, 1)),
            ("2026-11-01", datetime(2026, 11, 1)),
            ("32132026", None),
            ("soon", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse_bank_date(self, value, expected):
        assert parse_bank_date(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [("1.500,75", Decimal("1500.75")), ("10.5", Decimal("10.5")), (7, Decimal("7")), ("", None), ("x", None)],
    )
    def test_parse_amount(self, value, expected):
        assert parse_amount(value) == expected

    def test_resolve_external_id_order(self):
        assert resolve_external_id({"nuTitulo": "2", "id": "1"}) == "1"
        assert resolve_external_id({"id": "", "nuTituloGerado": 5}) == "5"
        assert resolve_external_id({}) is None
