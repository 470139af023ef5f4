"""Tests for masking of personal data in stored bank documents."""

import copy

import pytest

from imobly.bradesco.sanitizer import (
    mask_document,
    mask_email,
    mask_name,
    mask_payment_line,
    mask_phone,
    normalize_key,
    sanitize,
)

ISSUE_REQUEST = {
    "nuCPFCNPJ": "38052160",
    "nomePagador": "JOSE LOCATARIO TESTE",
    "nuCpfcnpjPagador": "12345678909",
    "endEletronicoPagador": "locatario@exemplo.test",
    "dddFoneSacado": "11",
    "foneSacado": "988887777",
    "vlNominalTitulo": "985.50",
    "listaMsgs": [{"mensagem": "VALORES EXPRESSOS EM REAIS"}],
}


class TestSanitize:
    def test_issue_request_fields(self):
        result = sanitize(ISSUE_REQUEST)

        assert result["nomePagador"] == "J" + "*" * 18 + "E"
        assert result["nuCpfcnpjPagador"] == "123*****909"
        assert result["endEletronicoPagador"] == "l*******o@exemplo.test"
        assert result["foneSacado"] == "98*****77"
        assert result["dddFoneSacado"] == "**"
        assert result["nuCPFCNPJ"] == "380**160"

    def test_untouched_fields(self):
        result = sanitize(ISSUE_REQUEST)
        assert result["vlNominalTitulo"] == "985.50"
        assert result["listaMsgs"] == [{"mensagem": "VALORES EXPRESSOS EM REAIS"}]

    def test_does_not_mutate_input(self):
        original = copy.deepcopy(ISSUE_REQUEST)
        sanitize(ISSUE_REQUEST)
        assert ISSUE_REQUEST == original

    def test_payment_line_and_barcode(self):
        line = "23791234567890123456789012345678901234567890"
        result = sanitize({"linhaDigitavel": line, "codigo_barras": line})
        assert result["linhaDigitavel"] == "2379" + "*" * 36 + "7890"
        assert result["codigo_barras"] == result["linhaDigitavel"]

    def test_nested_payer_block(self):
        result = sanitize({"pagador": {"nome": "Maria Silva", "cpf": "987.654.321-00"}})
        assert result["pagador"]["nome"] == "M*********a"
        assert result["pagador"]["cpf"] == "987*****100"

    def test_lists_are_walked(self):
        result = sanitize({"titulos": [{"cpf": "98765432100"}, {"cpf": "12345678909"}]})
        assert [t["cpf"] for t in result["titulos"]] == ["987*****100", "123*****909"]

    def test_name_of_non_person_is_kept(self):
        assert sanitize({"nomeProduto": "COBRANCA"}) == {"nomeProduto": "COBRANCA"}

    def test_non_string_values_pass_through(self):
        payload = {"cpf": None, "valor": 985.5, "pagador": True}
        assert sanitize(payload) == payload

    def test_idempotent(self):
        once = sanitize(ISSUE_REQUEST)
        assert sanitize(once) == once

    def test_scalar_input_returned(self):
        assert sanitize("plain") == "plain"

    def test_document_without_digits_uses_fallback(self):
        assert sanitize({"cpf": "n/a"}) == {"cpf": "n*a"}

    def test_invalid_email_uses_fallback(self):
        assert sanitize({"email": "not-an-email"}) == {"email": "n" + "*" * 10 + "l"}


class TestMasks:
    def test_short_document_fully_masked(self):
        assert mask_document("1234") == "****"

    def test_phone(self):
        assert mask_phone("(11) 98888-7777") == "11*******77"

    def test_payment_line_keeps_edges(self):
        assert mask_payment_line("1234567890") == "1234**7890"

    @pytest.mark.parametrize("value,expected", [("Al", "**"), ("Ana", "A*a")])
    def test_name(self, value, expected):
        assert mask_name(value) == expected

    def test_email_single_char_local(self):
        assert mask_email("a@x.test") == "a*@x.test"


class TestNormalizeKey:
    @pytest.mark.parametrize(
        "key,expected",
        [
            ("nuCpfcnpjPagador", "nu_cpfcnpj_pagador"),
            ("nome_pagador", "nome_pagador"),
            ("Nome Pagador", "nome_pagador"),
            ("linhaDigitavel", "linha_digitavel"),
        ],
    )
    def test_snake_case(self, key, expected):
        assert normalize_key(key) == expected


class TestValuesContainingStars:
    def test_document_with_trailing_star_is_masked(self):
        result = sanitize({"cpfPagador": "123.456.789-09 *"})
        assert result == {"cpfPagador": "123*****909"}

    def test_name_with_trailing_star_is_masked(self):
        result = sanitize({"nomePagador": "Maria da Silva*"})
        assert result == {"nomePagador": "M" + "*" * 14}

    def test_email_with_star_in_local_part_is_masked(self):
        assert sanitize({"email": "ma*ria@exemplo.test"}) == {"email": "m****a@exemplo.test"}

    @pytest.mark.parametrize(
        "key,value",
        [
            ("cpfPagador", "123*****909"),
            ("cpf", "****"),
            ("cpf", "n*a"),
            ("foneSacado", "98*****77"),
            ("linhaDigitavel", "2379" + "*" * 36 + "7890"),
            ("nomePagador", "J" + "*" * 18 + "E"),
            ("endEletronicoPagador", "l*******o@exemplo.test"),
            ("email", "a*@x.test"),
        ],
    )
    def test_masked_shape_kept(self, key, value):
        assert sanitize({key: value}) == {key: value}


class TestShortDigitRuns:
    @pytest.mark.parametrize("value", ["12345", "123456"])
    def test_document_without_hidden_middle_fully_masked(self, value):
        assert mask_document(value) == "*" * len(value)

    def test_payment_line_without_hidden_middle_fully_masked(self):
        assert mask_payment_line("12345678") == "********"

    def test_seven_digit_document_hides_middle(self):
        assert mask_document("1234567") == "123*567"


SWEEP_DOCUMENTS = [
    ("12345678909", "45678"),
    ("123.456.789-09", "45678"),
    ("123.456.789-09 *", "45678"),
    ("*12345678909", "45678"),
    (" 123 456 789 09 ", "45678"),
    ("38.052.160/0057-00", "52160005"),
]
SWEEP_PHONES = [
    ("(11) 98888-7777", "9888877"),
    ("+55 (11) 98888-7777", "119888877"),
    ("11 98888-7777*", "9888877"),
]
SWEEP_PAYMENT_LINES = [
    ("23791.23456 78901.234567 89012.345678 9 12340000098550", "123456789012345678901234567891234000009"),
    ("23791234567890123456789012345678901234567890*", "123456789012345678901234567890123456"),
]
SWEEP_NAMES = [
    ("Maria da Silva", "aria da Silv"),
    ("Maria da Silva*", "aria da Silva"),
    ("José da Conceição", "osé da Conceiçã"),
    ("*Ana Paula Souza*", "Ana Paula Souza"),
]
SWEEP_EMAILS = [
    ("maria.silva@exemplo.test", "aria.silv"),
    ("ma*ria@exemplo.test", "a*ri"),
    ("joão.conceição@exemplo.test", "oão.conceiçã"),
]


def _sweep(keys, values):
    return [(key, value, secret) for key in keys for value, secret in values]


@pytest.mark.parametrize(
    "key,value,secret",
    _sweep(["cpf", "cnpj", "nuCpfcnpjPagador", "nuCPFCNPJ", "documentoSacado"], SWEEP_DOCUMENTS)
    + _sweep(["telefone", "foneSacado", "celularPagador"], SWEEP_PHONES)
    + _sweep(["linhaDigitavel", "codigoBarras", "linha_digitavel"], SWEEP_PAYMENT_LINES)
    + _sweep(["nomePagador", "nome", "nomeSacadorAvalista", "nome_beneficiario"], SWEEP_NAMES)
    + _sweep(["email", "endEletronicoPagador", "emailSacado"], SWEEP_EMAILS),
)
def test_classified_values_never_survive(key, value, secret):
    masked = sanitize({key: value})[key]

    assert secret not in masked
    assert value not in masked
    assert sanitize({key: masked}) == {key: masked}


@pytest.mark.parametrize(
    "key", ["vlNominalTitulo", "nomeProduto", "mensagem", "dataVencimento", "status"]
)
@pytest.mark.parametrize("value", ["985.50", "12345678909", "Maria da Silva*", "**", "Conceição"])
def test_unclassified_values_unchanged(key, value):
    assert sanitize({key: value}) == {key: value}
