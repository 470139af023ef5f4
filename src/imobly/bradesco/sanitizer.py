"""Masking of personal data in Bradesco request/response documents.

Every payload persisted in fatura_boletos (request, response, webhook)
goes through sanitize() first. Keys are normalized to snake_case before
classification, so "nomePagador" and "nome_pagador" are treated alike.
"""

from __future__ import annotations

import re
from typing import Any

_SNAKE_BOUNDARY = re.compile(r"(.)(?=[A-Z])")
_NON_DIGIT = re.compile(r"\D+")

_PAYMENT_LINE_KEYS = ("linha_digitavel", "linhadigitavel")
_BARCODE_KEYS = ("codigo_barras", "codigobarras")
_EMAIL_KEYS = ("email", "eletronico")
_PHONE_KEYS = ("telefone", "fone", "celular")
_NAME_OWNERS = ("pagador", "sacado", "sacador", "avalista", "beneficiario")
_DOCUMENT_KEYS = (
    "cpf",
    "cnpj",
    "documento",
    "cliente",
    "pagador",
    "sacado",
    "sacador",
    "beneficiario",
    "controle",
    "raiz",
    "filial",
)


def sanitize(payload: Any) -> Any:
    """Return a copy of payload with personal data masked.

    Dicts and lists are walked recursively. Only string values under
    classified keys are masked; numbers, booleans and None pass through.
    Never raises.
    """
    if isinstance(payload, dict):
        return {key: _sanitize_entry(key, value) for key, value in payload.items()}
    if isinstance(payload, list):
        return [sanitize(item) for item in payload]
    return payload


def _sanitize_entry(key: Any, value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return sanitize(value)
    if not isinstance(value, str):
        return value
    return _sanitize_scalar(key, value)


def normalize_key(key: Any) -> str:
    """snake_case and lowercase a payload key ("nuCpfcnpjPagador" -> "nu_cpfcnpj_pagador")."""
    text = str(key)
    if not text.islower():
        text = "".join(word[:1].upper() + word[1:] for word in text.split())
        text = _SNAKE_BOUNDARY.sub(r"\1_", text)
    return text.lower()


def _contains(keys: tuple[str, ...], needles: tuple[str, ...]) -> bool:
    return any(needle in key for key in keys for needle in needles)


def _sanitize_scalar(raw_key: Any, value: str) -> str:
    # Upper-case acronyms ("nuCPFCNPJ") only match in their compact form
    keys = (normalize_key(raw_key), str(raw_key).lower())

    if _contains(keys, _PAYMENT_LINE_KEYS) or _contains(keys, _BARCODE_KEYS):
        kind = "payment_line"
    elif _contains(keys, _EMAIL_KEYS):
        kind = "email"
    elif _contains(keys, _PHONE_KEYS):
        kind = "phone"
    elif _is_name_key(keys):
        kind = "name"
    elif _contains(keys, _DOCUMENT_KEYS):
        kind = "document"
    else:
        return value

    # Output of an earlier pass; re-masking would drop the stars
    if is_masked(kind, value):
        return value
    return _MASKERS[kind](value)


def is_masked(kind: str, value: str) -> bool:
    """True when value has exactly the shape the mask for kind produces."""
    return any(shape.fullmatch(value) for shape in _MASKED_SHAPES[kind])


def _is_name_key(keys: tuple[str, ...]) -> bool:
    if not _contains(keys, ("nome",)):
        return False
    return _contains(keys, _NAME_OWNERS) or keys[0] == "nome"


def _digits(value: str) -> str:
    return _NON_DIGIT.sub("", value)


def _mask_digits(value: str, keep_start: int, keep_end: int) -> str:
    digits = _digits(value)
    if not digits:
        return mask_fallback(value)
    # Too short to hide anything while keeping both edges
    if len(digits) <= keep_start + keep_end:
        return "*" * len(digits)
    hidden = len(digits) - keep_start - keep_end
    return digits[:keep_start] + "*" * hidden + digits[-keep_end:]


def mask_document(value: str) -> str:
    """CPF/CNPJ and other identifiers: first 3 and last 3 digits visible."""
    return _mask_digits(value, 3, 3)


def mask_phone(value: str) -> str:
    return _mask_digits(value, 2, 2)


def mask_payment_line(value: str) -> str:
    """Linha digitavel / codigo de barras: first 4 and last 4 digits visible."""
    return _mask_digits(value, 4, 4)


def mask_name(value: str) -> str:
    if len(value) <= 2:
        return "*" * len(value)
    return value[0] + "*" * (len(value) - 2) + value[-1]


def mask_email(value: str) -> str:
    parts = value.split("@")
    if len(parts) != 2:
        return mask_fallback(value)

    local, domain = parts
    local = local or "*"
    last = local[-1] if len(local) > 1 else ""
    return local[0] + "*" * max(len(local) - 2, 1) + last + "@" + domain


def mask_fallback(value: str) -> str:
    if not value:
        return ""
    if len(value) <= 2:
        return "*" * len(value)
    return value[0] + "*" * (len(value) - 2) + value[-1]


_ALL_STARS = re.compile(r"\*+")
_EDGES_ONLY = re.compile(r".\*+.")

_MASKERS = {
    "payment_line": mask_payment_line,
    "email": mask_email,
    "phone": mask_phone,
    "name": mask_name,
    "document": mask_document,
}

_MASKED_SHAPES = {
    "payment_line": (re.compile(r"\d{4}\*+\d{4}"), _ALL_STARS, re.compile(r"\D\*+\D")),
    "email": (re.compile(r"[^@]\*+[^@]?@[^@]*"), _EDGES_ONLY, _ALL_STARS),
    "phone": (re.compile(r"\d{2}\*+\d{2}"), _ALL_STARS, re.compile(r"\D\*+\D")),
    "name": (_EDGES_ONLY, _ALL_STARS),
    "document": (re.compile(r"\d{3}\*+\d{3}"), _ALL_STARS, re.compile(r"\D\*+\D")),
}
