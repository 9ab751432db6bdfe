# presta_migrate/sync/components/util.py
from __future__ import annotations

import html
import os
import re
import unicodedata
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from urllib.parse import urlparse
from typing import Any, Iterable, List

# letters NFKD leaves alone
_NO_DECOMPOSE = str.maketrans({"đ": "d", "Đ": "D", "ß": "ss", "ø": "o", "Ø": "O", "æ": "ae", "Æ": "AE", "ł": "l", "Ł": "L"})


def slugify(text: str) -> str:
    """
    Simple slugifier: accents folded to ASCII, lowercase, non-alnum -> single '-'.
    Guarantees a non-empty slug.
    """
    text = (text or "").translate(_NO_DECOMPOSE)
    text = unicodedata.normalize("NFKD", text or "")
    text = text.encode("ascii", "ignore").decode("ascii").strip().lower()
    out = []
    dash = False
    for ch in text:
        if ch.isalnum():
            out.append(ch)
            dash = False
        else:
            if not dash:
                out.append("-")
                dash = True
    slug = "".join(out).strip("-")
    return slug or "n-a"


def strip_html(text: str | None) -> str:
    return re.sub(r"<[^>]+>", "", text or "")


def normalize_name(text: str | None) -> str:
    """Trim, strip markup/entities, collapse internal whitespace."""
    return re.sub(r"\s+", " ", html.unescape(strip_html(text))).strip()


def basename(url_or_path: str) -> str:
    if url_or_path.startswith(("http://", "https://")):
        return os.path.basename(urlparse(url_or_path).path) or "image.jpg"
    return os.path.basename(url_or_path) or "image.jpg"


def dedupe_preserve_order(items: Iterable[Any]) -> List[Any]:
    seen, out = set(), []
    for x in items:
        if x in seen:
            continue
        seen.add(x)
        out.append(x)
    return out


def format_wc_price(value) -> str:
    try:
        d = Decimal(str(value if value is not None else 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return "0.00"
    # avoid scientific notation and guarantee 2 decimals
    return f"{d:.2f}"


def format_decimal(value) -> str | None:
    """Weight/dimension strings; None for missing or non-positive values."""
    if value is None:
        return None
    try:
        d = Decimal(str(value))
    except InvalidOperation:
        return None
    if not d.is_finite() or d <= 0:
        return None
    return format(d.normalize(), "f")
