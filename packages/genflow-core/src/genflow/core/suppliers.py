"""Supplier CSV parsing and the deterministic match-rate rule table.

The rule table is what the supplier flow answers with when no live model
backend is used (stubbed flow). Classification is by keyword on the
category (falling back to the name); the score inside a bucket is derived
from the supplier name, so the same row always scores the same.
"""

from __future__ import annotations

import csv
import io
import logging
import zlib
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Tuple

from genflow.core.spec import SupplierDataInput, SupplierDataOutput, SupplierRecord, normalize_date

log = logging.getLogger("genflow.core.suppliers")

TECH = "tech"
APPLIANCE = "appliance"
OTHER = "other"

SCORE_RANGES: Dict[str, Tuple[int, int]] = {
    TECH: (70, 95),
    APPLIANCE: (50, 70),
    OTHER: (10, 40),
}

# Checked in order: tech wins over appliance ("智能家居科技" is tech).
_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    (TECH, ("电子", "软件", "科技", "技术", "芯片", "半导体", "数码", "electronic", "software", "tech", "semiconductor", "digital", "it")),
    (APPLIANCE, ("家电", "电器", "家用", "家居", "厨卫", "appliance", "household", "home")),
)

_NAME_HEADERS = ("名称", "供应商名称", "供应商", "name", "supplier", "supplier_name")
_CATEGORY_HEADERS = ("类别", "业务类别", "类型", "行业", "category", "type", "industry")
_DATE_HEADERS = ("日期", "添加日期", "addeddate", "added_date", "date")


def _hit(word: str, low: str, tokens: set[str]) -> bool:
    # short ascii keywords must match a whole token ("it" vs "kitchen")
    if word.isascii() and len(word) <= 3:
        return word in tokens
    return word in low


def classify(category: str, name: str = "") -> str:
    """Bucket for a supplier: 'tech', 'appliance' or 'other'."""
    for text in (category, name):
        low = (text or "").lower()
        tokens = set(low.replace("/", " ").replace(",", " ").split())
        for bucket, words in _KEYWORDS:
            if any(_hit(w, low, tokens) for w in words):
                return bucket
        if category:
            # an explicit category that matched nothing is "other"; don't guess from the name
            return OTHER
    return OTHER


def match_rate(name: str, category: str) -> int:
    lo, hi = SCORE_RANGES[classify(category, name)]
    return lo + zlib.crc32((name or "").encode("utf-8")) % (hi - lo + 1)


@dataclass(frozen=True)
class SupplierRow:
    name: str
    category: str
    added_date: Optional[str] = None


def _pick(headers: List[str], candidates: Tuple[str, ...]) -> Optional[str]:
    norm = {h.strip().lower(): h for h in headers if h}
    for c in candidates:
        if c.lower() in norm:
            return norm[c.lower()]
    return None


def parse_supplier_csv(csv_data: str) -> List[SupplierRow]:
    """Parse supplier rows. Known Chinese/English headers are recognized;
    otherwise the first two columns are name and category."""
    text = (csv_data or "").lstrip("﻿").strip()
    if not text:
        return []

    reader = csv.reader(io.StringIO(text))
    rows = [r for r in reader if any(c.strip() for c in r)]
    if not rows:
        return []

    header = [c.strip() for c in rows[0]]
    name_col = _pick(header, _NAME_HEADERS)
    if name_col is not None:
        cat_col = _pick(header, _CATEGORY_HEADERS)
        date_col = _pick(header, _DATE_HEADERS)
        idx = {h: i for i, h in enumerate(header)}
        body = rows[1:]

        def cell(r: List[str], col: Optional[str]) -> str:
            if col is None:
                return ""
            i = idx[col]
            return r[i].strip() if i < len(r) else ""

        out = [SupplierRow(cell(r, name_col), cell(r, cat_col), cell(r, date_col) or None) for r in body]
    else:
        out = [SupplierRow(r[0].strip(), r[1].strip() if len(r) > 1 else "") for r in rows]

    return [r for r in out if r.name]


def score_suppliers(value: SupplierDataInput) -> SupplierDataOutput:
    """Deterministic answer for the supplier flow."""
    today = value.reference_date or date.today()
    suppliers: List[SupplierRecord] = []
    for row in parse_supplier_csv(value.csv_data):
        added = today.isoformat()
        if row.added_date:
            try:
                added = normalize_date(row.added_date)
            except ValueError:
                log.debug("unparseable added date %r for %s; using reference date", row.added_date, row.name)
        suppliers.append(
            SupplierRecord(
                name=row.name,
                category=row.category or "未分类",
                match_rate=match_rate(row.name, row.category),
                added_date=added,
            )
        )
    return SupplierDataOutput(suppliers=suppliers)
