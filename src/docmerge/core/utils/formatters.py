"""Brazilian document masks.

Each formatter keeps the digits of its input, applies the mask as far as the
digits go and cuts the result to the full mask length:

    format_cpf("12345678901")  -> "123.456.789-01"
    format_cep("0131")         -> "0131"
"""
from __future__ import annotations

import re
from typing import Any

_NON_DIGIT_RE = re.compile(r"\D")


def digits(value: Any) -> str:
    return _NON_DIGIT_RE.sub("", "" if value is None else str(value))


def _mask(value: Any, steps: list[tuple[str, str]], limit: int) -> str:
    s = digits(value)
    for pattern, repl in steps:
        s = re.sub(pattern, repl, s, count=1)
    return s[:limit]


def format_cpf(value: Any) -> str:
    return _mask(value, [
        (r"(\d{3})(\d)", r"\1.\2"),
        (r"(\d{3})(\d)", r"\1.\2"),
        (r"(\d{3})(\d{1,2})$", r"\1-\2"),
    ], 14)


def format_cnpj(value: Any) -> str:
    return _mask(value, [
        (r"^(\d{2})(\d)", r"\1.\2"),
        (r"^(\d{2})\.(\d{3})(\d)", r"\1.\2.\3"),
        (r"\.(\d{3})(\d)", r".\1/\2"),
        (r"(\d{4})(\d)", r"\1-\2"),
    ], 18)


def format_rg(value: Any) -> str:
    return _mask(value, [
        (r"(\d{2})(\d)", r"\1.\2"),
        (r"(\d{3})(\d)", r"\1.\2"),
        (r"(\d{3})(\d{1,2})$", r"\1-\2"),
    ], 12)


def format_cep(value: Any) -> str:
    return _mask(value, [(r"(\d{5})(\d)", r"\1-\2")], 9)


def format_phone(value: Any) -> str:
    return _mask(value, [
        (r"^(\d{2})(\d)", r"(\1) \2"),
        (r"(\d)(\d{4})$", r"\1-\2"),
    ], 15)
