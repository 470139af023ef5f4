"""Issue request (registro de cobranca) builder.

Turns an invoice plus optional context into the flat document expected by
POST /boleto/cobranca-registro/v1/cobranca. Field widths and defaults follow
the Bradesco cobranca manual: dates as dd.mm.yyyy, decimals with a dot,
numeric codes left-padded with zeros, free text upper-case ASCII.

Context keys (all optional): valor, iof, juros{percentual,valor,dias},
multa{percentual,valor,dias}, descontos[{percentual,valor,data_limite}],
bonificacao{prazo,percentual,valor,data_limite}, abatimento{valor},
instrucoes (list of lines), sacador{...}, debito_automatico, debito{...},
pagamento_parcial{indicador,quantidade}, protesto{banco,agencia},
indicador_aceite.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from imobly.bradesco.settings import BradescoSettings
from imobly.domain.boletos import BoletoIssueError
from imobly.domain.invoices import Invoice, Payer
from imobly.infra.time import utc_now

EMPTY_DATE = "00.00.0000"
MAX_MESSAGES = 6
MESSAGE_WIDTH = 70
DEFAULT_INTEREST_PERCENT = Decimal("2")
DEFAULT_FINE_PERCENT = Decimal("10")

_NON_DIGIT = re.compile(r"\D")
_TEXT_DISALLOWED = re.compile(r"[^A-Z0-9\-./ ,$]+")
_SPACES = re.compile(r"\s+")
_CENT = Decimal("0.01")

_PERCENT_VALUE_PAIRS = (
    ("percentualBonificacao", "vlBonificacao"),
    ("percentualDesconto1", "vlDesconto1"),
    ("percentualDesconto2", "vlDesconto2"),
    ("percentualDesconto3", "vlDesconto3"),
    ("percentualJuros", "vlJuros"),
    ("percentualMulta", "vlMulta"),
)


def digits(value: Any) -> str:
    return _NON_DIGIT.sub("", str(value or ""))


def normalize_text(value: Any, limit: int = 70) -> str:
    """ASCII, upper-case, restricted charset, squeezed spaces, cut at limit."""
    text = unicodedata.normalize("NFKD", str(value or "")).encode("ascii", "ignore").decode("ascii")
    text = _TEXT_DISALLOWED.sub(" ", text.upper())
    text = _SPACES.sub(" ", text).strip()
    return text[:limit]


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value or "").strip().replace(",", ".")
    try:
        return Decimal(text)
    except InvalidOperation:
        return Decimal("0")


def format_decimal(value: Any, precision: int = 2) -> str:
    quantum = Decimal(1).scaleb(-precision)
    return str(to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def format_br_currency(value: Any) -> str:
    """1234.5 -> "1.234,50"; negatives clamp to zero."""
    amount = max(to_decimal(value), Decimal("0")).quantize(_CENT, rounding=ROUND_HALF_UP)
    whole, cents = f"{amount:.2f}".split(".")
    return f"{int(whole):,}".replace(",", ".") + "," + cents


def format_integer(value: Any, length: int = 3) -> str:
    number = int(to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return str(max(number, 0)).rjust(length, "0")


def format_numeric_field(value: Any, length: int) -> str:
    """Digits only, keeping the rightmost length digits, zero-padded."""
    text = digits(value) or "0"
    return text[-length:].rjust(length, "0")


def format_date(value: date | datetime) -> str:
    return value.strftime("%d.%m.%Y")


def format_optional_date(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return format_date(value)
    if isinstance(value, str):
        text = value.strip()
        if text in ("", "0", EMPTY_DATE):
            return EMPTY_DATE
        for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d.%m.%Y"):
            try:
                return format_date(datetime.strptime(text, fmt))
            except ValueError:
                continue
    return EMPTY_DATE


def split_cep(cep: Any) -> tuple[str, str]:
    text = digits(cep)[:8].ljust(8, "0")
    return text[:5], text[5:8]


def split_phone(phone: Any) -> tuple[str, str]:
    """Split into (DDD, number), defaulting to ("00", "000000000")."""
    text = digits(phone)
    if not text:
        return "00", "000000000"
    ddd, number = text[:2], text[2:]
    if not number:
        number = "000000000"
    return ddd[:2].rjust(2, "0"), number[:9].rjust(9, "0")


def _get(context: dict[str, Any], path: str, default: Any = None) -> Any:
    current: Any = context
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return default
    return current


def _has(context: dict[str, Any], path: str) -> bool:
    marker = object()
    return _get(context, path, marker) is not marker


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", normalize_text(value, 255).lower()).strip("-")


def beneficiary_identifiers(settings: BradescoSettings) -> dict[str, str]:
    return {
        "raiz": digits(settings.cnpj_raiz).rjust(8, "0")[:8],
        "filial": digits(settings.cnpj_filial).rjust(4, "0")[:4],
        "controle": digits(settings.cnpj_controle).rjust(2, "0")[:2],
    }


def payer_fields(payer: Payer) -> dict[str, str]:
    document = digits(payer.cpf_cnpj)
    return {
        "nome": normalize_text(payer.nome or "PAGADOR NAO INFORMADO", 70),
        "documento": document or "0" * 11,
        "tipo_documento": "2" if len(document) > 11 else "1",
        "logradouro": normalize_text(payer.rua or "NAO INFORMADO", 40),
        "numero": normalize_text(payer.numero or "S/N", 10),
        "complemento": normalize_text(payer.complemento, 15) if payer.complemento else "",
        "bairro": normalize_text(payer.bairro or "CENTRO", 40),
        "cidade": normalize_text(payer.cidade or "SAO PAULO", 30),
        "uf": (payer.estado or "SP")[:2].upper(),
        "cep": digits(payer.cep),
        "email": payer.email.strip().lower()[:70] if payer.email else "",
        "telefone": digits(payer.telefone),
    }


def nosso_numero_for(invoice: Invoice) -> str:
    """Digits of the contract code (or the invoice id), 11 wide."""
    base = digits(invoice.codigo_contrato) or str(invoice.id)
    return base.rjust(11, "0")[:11]


def document_number_for(invoice: Invoice) -> str:
    number = str(invoice.id)
    if invoice.codigo_contrato:
        number = _slug(f"{invoice.codigo_contrato}-{invoice.id}")
    number = digits(number) or str(invoice.id)
    return number.rjust(10, "0")[:25]


def participant_control_for(invoice: Invoice) -> str:
    return normalize_text(invoice.codigo_contrato, 25) if invoice.codigo_contrato else ""


def build_messages(
    invoice: Invoice,
    interest_value: Any,
    fine_value: Any,
) -> list[dict[str, str]]:
    """Up to six unique 70-char lines: currency note, interest, fine, items."""
    lines = [
        "VALORES EXPRESSOS EM REAIS",
        f"JUROS POR DIA DE ATRASO R$ {format_br_currency(interest_value)}",
        (
            f"APOS {invoice.vencimento.strftime('%d/%m/%Y')} MULTA R$ {format_br_currency(fine_value)}"
            if invoice.vencimento
            else f"MULTA APOS VENCIMENTO R$ {format_br_currency(fine_value)}"
        ),
    ]
    for item in invoice.items:
        category = normalize_text(item.categoria or "ITEM", 40) or "ITEM"
        amount = item.valor_unitario if item.valor_unitario is not None else item.valor_total
        lines.append(f"{category} R$ {format_br_currency(amount or 0)}")

    messages: list[str] = []
    for line in lines:
        text = normalize_text(line, MESSAGE_WIDTH)
        if text and text not in messages:
            messages.append(text)
    return [{"mensagem": text} for text in messages[:MAX_MESSAGES]]


def guarantor_fields(context: dict[str, Any]) -> dict[str, str]:
    """Sacador avalista block; zeros/blanks when the context has none."""
    fields = {
        "nomeSacadorAvalista": "",
        "cdIndCpfcnpjSacadorAvalista": "0",
        "nuCpfcnpjSacadorAvalista": "00000000000000",
        "logradouroSacadorAvalista": "",
        "nuLogradouroSacadorAvalista": "",
        "complementoLogradouroSacadorAvalista": "",
        "cepSacadorAvalista": "00000",
        "complementoCepSacadorAvalista": "000",
        "bairroSacadorAvalista": "",
        "municipioSacadorAvalista": "",
        "ufSacadorAvalista": "",
        "dddFoneSacadorAvalista": "00",
        "foneSacadorAvalista": "000000000",
        "enderecoSacadorAvalista": "",
    }
    guarantor = context.get("sacador")
    if not isinstance(guarantor, dict):
        return fields

    document = digits(guarantor.get("documento"))
    cep = digits(guarantor.get("cep"))
    ddd, phone = split_phone(guarantor.get("telefone"))
    fields.update(
        {
            "nomeSacadorAvalista": normalize_text(guarantor.get("nome"), 40),
            "cdIndCpfcnpjSacadorAvalista": ("2" if len(document) > 11 else "1") if document else "0",
            "nuCpfcnpjSacadorAvalista": document or fields["nuCpfcnpjSacadorAvalista"],
            "logradouroSacadorAvalista": normalize_text(guarantor.get("logradouro"), 40),
            "nuLogradouroSacadorAvalista": normalize_text(guarantor.get("numero"), 10),
            "complementoLogradouroSacadorAvalista": normalize_text(guarantor.get("complemento"), 15),
            "cepSacadorAvalista": cep.rjust(5, "0")[:5],
            "complementoCepSacadorAvalista": cep.rjust(8, "0")[5:8],
            "bairroSacadorAvalista": normalize_text(guarantor.get("bairro"), 40),
            "municipioSacadorAvalista": normalize_text(guarantor.get("municipio"), 40),
            "ufSacadorAvalista": str(guarantor.get("uf") or "")[:2].upper(),
            "dddFoneSacadorAvalista": ddd,
            "foneSacadorAvalista": phone,
            "enderecoSacadorAvalista": normalize_text(guarantor.get("endereco"), 70),
        }
    )
    return fields


def _is_zero(value: Any) -> bool:
    if value is None or value == "":
        return True
    return to_decimal(value) == 0


def normalize_percent_value_pairs(payload: dict[str, Any]) -> dict[str, Any]:
    """Keep at most one of each percentual/valor pair; the percentage wins."""
    for percent_key, value_key in _PERCENT_VALUE_PAIRS:
        percent = to_decimal(payload.get(percent_key) or 0)
        value = to_decimal(payload.get(value_key) or 0)
        if percent > 0 and value > 0:
            value = Decimal("0")

        if percent > 0:
            payload[percent_key] = format_decimal(percent)
        else:
            payload.pop(percent_key, None)

        if value > 0:
            payload[value_key] = format_decimal(value)
        else:
            payload.pop(value_key, None)
    return payload


def prune_empty_discounts(payload: dict[str, Any]) -> dict[str, Any]:
    """Drop zeroed discount/bonus blocks the bank would reject."""
    for index in (1, 2, 3):
        percent_key = f"percentualDesconto{index}"
        value_key = f"vlDesconto{index}"
        if _is_zero(payload.get(percent_key)) and _is_zero(payload.get(value_key)):
            for key in (percent_key, value_key, f"dataLimiteDesconto{index}"):
                payload.pop(key, None)

    if _is_zero(payload.get("percentualBonificacao")) and _is_zero(payload.get("vlBonificacao")):
        for key in ("percentualBonificacao", "vlBonificacao", "dtLimiteBonificacao"):
            payload.pop(key, None)
        if "prazoBonificacao" in payload and _is_zero(payload["prazoBonificacao"]):
            payload.pop("prazoBonificacao")
    return payload


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def build_issue_payload(
    settings: BradescoSettings,
    invoice: Invoice,
    context: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Build the issue request for an invoice.

    Args:
        settings: Integration settings (beneficiary, product, defaults).
        invoice: Invoice with codigo_contrato, payer and items loaded.
        context: Optional overrides (see module docstring).
        now: Emission timestamp; defaults to the current time.

    Returns:
        Request document with None values removed.

    Raises:
        BoletoIssueError: If the invoice has no payer.
    """
    context = context or {}
    if invoice.payer is None:
        raise BoletoIssueError(f"invoice {invoice.id} has no tenant linked to its contract")

    payer = payer_fields(invoice.payer)
    beneficiary = beneficiary_identifiers(settings)
    base_value = to_decimal(context.get("valor", invoice.valor_total))
    emission = now or utc_now()
    due = invoice.vencimento or emission
    cep, cep_suffix = split_cep(payer["cep"])
    ddd, phone = split_phone(payer["telefone"])

    interest_percent = to_decimal(_get(context, "juros.percentual", DEFAULT_INTEREST_PERCENT))
    if _has(context, "juros.valor"):
        interest_value = _get(context, "juros.valor")
    else:
        interest_value = (base_value * interest_percent / 100).quantize(_CENT, rounding=ROUND_HALF_UP)

    fine_percent = to_decimal(_get(context, "multa.percentual", DEFAULT_FINE_PERCENT))
    if _has(context, "multa.valor"):
        fine_value = _get(context, "multa.valor")
    else:
        fine_value = (base_value * fine_percent / 100).quantize(_CENT, rounding=ROUND_HALF_UP)

    if "instrucoes" in context:
        instructions = [{"mensagem": normalize_text(line, MESSAGE_WIDTH)} for line in context["instrucoes"]]
    else:
        instructions = build_messages(invoice, interest_value, fine_value)

    registra = settings.registra_titulo.strip().upper()

    payload: dict[str, Any] = {
        "debitoAutomatico": context.get("debito_automatico", "N"),
        "nuCPFCNPJ": beneficiary["raiz"],
        "filialCPFCNPJ": beneficiary["filial"],
        "ctrlCPFCNPJ": beneficiary["controle"],
        "idProduto": settings.id_produto.strip() or "00",
        "nuNegociacao": format_numeric_field(settings.negociacao, 18),
        "nuTitulo": nosso_numero_for(invoice),
        "nuCliente": document_number_for(invoice),
        "registraTitulo": "1" if registra in ("S", "1") else "2",
        "tpVencimento": settings.tipo_vencimento.strip() or "0",
        "indicadorMoeda": settings.indicador_moeda.strip() or "1",
        "qmoedaNegocTitlo": format_decimal(settings.quantidade_moeda or 0),
        "cdEspecieTitulo": format_numeric_field(settings.cod_especie, 2),
        "dtEmissaoTitulo": format_date(emission),
        "dtVencimentoTitulo": format_date(due),
        "vlNominalTitulo": format_decimal(base_value),
        "vlIOF": format_decimal(context.get("iof", 0)),
        "vlAbatimento": format_decimal(_get(context, "abatimento.valor", 0)),
        "prazoBonificacao": format_integer(_get(context, "bonificacao.prazo", 0), 2),
        "percentualBonificacao": format_decimal(_get(context, "bonificacao.percentual", 0)),
        "vlBonificacao": format_decimal(_get(context, "bonificacao.valor", 0)),
        "dtLimiteBonificacao": format_optional_date(_get(context, "bonificacao.data_limite")),
        "percentualJuros": None,
        "vlJuros": format_decimal(interest_value),
        "qtdeDiasJuros": format_integer(_get(context, "juros.dias", 1), 2),
        "percentualMulta": None,
        "vlMulta": format_decimal(fine_value),
        "qtdeDiasMulta": format_integer(_get(context, "multa.dias", 1), 3),
        "cdPagamentoParcial": _get(context, "pagamento_parcial.indicador", "N"),
        "qtdePagamentoParcial": format_integer(_get(context, "pagamento_parcial.quantidade", 0), 3),
        "tipoDecursoPrazo": settings.tipo_decurso,
        "tipoDiasDecursoProt": settings.tipo_dias_decurso,
        "tipoPrazoDecursoTres": format_integer(settings.tipo_prazo_tres or 0, 3),
        "cindcdAceitSacdo": context.get("indicador_aceite", settings.indicador_aceite_sacado.strip() or "2"),
        "tpProtestoAutomaticoNegativacao": settings.tp_protesto.strip() or "0",
        "prazoProtestoAutomaticoNegativacao": format_integer(settings.prazo_protesto or 0, 2),
        "codBancoDoProtesto": _get(context, "protesto.banco", "000"),
        "agenciaDoProtesto": _get(context, "protesto.agencia", "0000"),
        "nomePagador": payer["nome"],
        "logradouroPagador": payer["logradouro"],
        "nuLogradouroPagador": payer["numero"],
        "complementoLogradouroPagador": payer["complemento"],
        "cepPagador": cep,
        "complementoCepPagador": cep_suffix,
        "bairroPagador": payer["bairro"],
        "municipioPagador": payer["cidade"],
        "ufPagador": payer["uf"],
        "cdIndCpfcnpjPagador": payer["tipo_documento"],
        "nuCpfcnpjPagador": payer["documento"],
        "endEletronicoPagador": payer["email"],
        "dddFoneSacado": ddd,
        "foneSacado": phone,
        "bancoDoDebAutomatico": _get(context, "debito.banco", "000"),
        "agenciaDoDebAutomatico": _get(context, "debito.agencia", "00000"),
        "digitoAgenciaDoDebAutomat": _get(context, "debito.agencia_digito", "0"),
        "contaDoDebAutomatico": _get(context, "debito.conta", "0000000000000"),
        "razaoDoDebAutomatico": _get(context, "debito.razao", "000000"),
        "controleParticipante": participant_control_for(invoice),
    }

    for index in range(3):
        slot = index + 1
        payload[f"percentualDesconto{slot}"] = format_decimal(_get(context, f"descontos.{index}.percentual", 0))
        payload[f"vlDesconto{slot}"] = format_decimal(_get(context, f"descontos.{index}.valor", 0))
        payload[f"dataLimiteDesconto{slot}"] = format_optional_date(_get(context, f"descontos.{index}.data_limite"))

    payload.update(guarantor_fields(context))
    if instructions:
        payload["listaMsgs"] = instructions

    payload = normalize_percent_value_pairs(payload)
    payload = prune_empty_discounts(payload)

    if settings.fixtures_enabled and settings.sandbox_payload_overrides:
        payload = _deep_merge(payload, settings.sandbox_payload_overrides)

    return {key: value for key, value in payload.items() if value is not None}
