# --- Global log sanitizer to stop HTML body spam --------------------------------
# PrestaShop gateways and WordPress both answer errors with full HTML pages.
import logging, re

_HTML_SIG_RE = re.compile(r'(?is)<!DOCTYPE html|<html[^>]*>')
_TITLE_RE    = re.compile(r'(?is)<title[^>]*>(.*?)</title>')
_TAG_RE      = re.compile(r'(?is)<[^>]+>')
_SCRIPT_RE   = re.compile(r'(?is)<(script|style)[^>]*>.*?</\1>')


def strip_tags(s: str) -> str:
    s = _SCRIPT_RE.sub('', s or '')
    s = _TAG_RE.sub(' ', s)
    return re.sub(r'\s+', ' ', s).strip()


def _summarize_html(s: str, limit: int = 200) -> str:
    title = None
    m = _TITLE_RE.search(s)
    if m:
        title = strip_tags(m.group(1))
    preview = title or strip_tags(s)[:limit]
    return f"{preview} [HTML {len(s)} chars trimmed]"


def summarize_body(text: str, limit: int = 200) -> str:
    """Short, single-line version of a response body for error messages."""
    text = text or ""
    if _HTML_SIG_RE.search(text):
        return _summarize_html(text, limit)
    flat = re.sub(r'\s+', ' ', text).strip()
    return flat[:limit]


class HtmlTrimFilter(logging.Filter):
    """If a log message contains a large HTML blob, replace it with a short summary."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True
        if isinstance(msg, str) and len(msg) > 200 and _HTML_SIG_RE.search(msg):
            record.msg = _summarize_html(msg)
            record.args = ()
        return True


def install_html_trim_filter() -> None:
    # root + uvicorn family
    for name in ("", "uvicorn", "uvicorn.error"):
        logger = logging.getLogger(name)
        if not any(isinstance(f, HtmlTrimFilter) for f in logger.filters):
            logger.addFilter(HtmlTrimFilter())
# --------------------------------------------------------------------------------
