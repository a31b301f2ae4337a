"""GST totals and rupee amounts in words for tax invoices."""

from datetime import datetime, timezone

from database import next_sequence

ONES = [
    "", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine", "Ten",
    "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen", "Seventeen", "Eighteen", "Nineteen",
]
TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]

DEFAULT_RATES = {"igst_rate": 18.0, "cgst_rate": 9.0, "sgst_rate": 9.0}


def number_to_words(num: int) -> str:
    """Indian numbering: Thousand, Lakh, Crore."""
    if num == 0:
        return "Zero"
    return _words(num)


def _words(num: int) -> str:
    if num == 0:
        return ""
    if num < 20:
        return ONES[num]
    if num < 100:
        return " ".join(w for w in (TENS[num // 10], ONES[num % 10]) if w)
    if num < 1000:
        return _join(ONES[num // 100], "Hundred", _words(num % 100))
    if num < 100000:
        return _join(_words(num // 1000), "Thousand", _words(num % 1000))
    if num < 10000000:
        return _join(_words(num // 100000), "Lakh", _words(num % 100000))
    return _join(_words(num // 10000000), "Crore", _words(num % 10000000))


def _join(head: str, unit: str, rest: str) -> str:
    return f"{head} {unit} {rest}".strip()


def _rate(invoice: dict, key: str) -> float:
    value = invoice.get(key)
    return DEFAULT_RATES[key] if value is None else float(value)


def invoice_totals(invoice: dict) -> dict:
    try:
        amount = float(invoice.get("amount") or 0)
    except (TypeError, ValueError):
        amount = 0.0
    gst_type = invoice.get("gst_type") or "CGST_SGST"

    igst = amount * _rate(invoice, "igst_rate") / 100 if gst_type == "IGST" else 0.0
    cgst = amount * _rate(invoice, "cgst_rate") / 100 if gst_type == "CGST_SGST" else 0.0
    sgst = amount * _rate(invoice, "sgst_rate") / 100 if gst_type == "CGST_SGST" else 0.0
    total = amount + igst + cgst + sgst

    return {
        "amount": round(amount, 2),
        "gst_type": gst_type,
        "igst_amount": round(igst, 2),
        "cgst_amount": round(cgst, 2),
        "sgst_amount": round(sgst, 2),
        "total_amount": round(total, 2),
        "amount_in_words": f"{number_to_words(int(round(total)))} only",
    }


def next_invoice_number(year: int = None) -> str:
    year = year or datetime.now(timezone.utc).year
    return f"INV-{year}-{next_sequence(f'invoice-{year}'):04d}"
