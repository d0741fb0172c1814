"""Fear & Greed resolution across redundant sources and relay proxies.

The score has no documented API: the structured endpoint and the HTML
page change shape and block direct clients without notice.  Resilience
therefore comes from walking an ordered (target × proxy) matrix,
target-major and proxy-minor, and returning the **first** pair that
yields a usable reading.  Each pair gets one short-timeout GET; a failed
pair is never retried, the walk simply moves on.

Payload interpretation is a chain of parsers sharing one interface
(``accepts(text)`` / ``parse(text)``), so the regex-based HTML scraper
can be swapped without touching the resolver's control flow.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Iterable
from urllib.parse import quote

import httpx

from .common_types import SentimentPoint, SentimentResult, SentimentSnapshot

logger = logging.getLogger(__name__)

# Relay services that wrap the forwarded body put it under one of these keys.
ENVELOPE_FIELDS: tuple[str, ...] = ("contents",)

# Only the first chunk is inspected when sniffing for an HTML document.
_SNIFF_BYTES = 2048


@dataclass(frozen=True)
class SentimentTarget:
    """One upstream sentiment endpoint."""

    name: str
    url: str


@dataclass(frozen=True)
class Proxy:
    """One forwarding transport; ``template`` holds a ``{url}`` placeholder."""

    name: str
    template: str
    encode: bool = True

    def wrap(self, url: str) -> str:
        return self.template.format(url=quote(url, safe="") if self.encode else url)


DEFAULT_TARGETS: tuple[SentimentTarget, ...] = (
    SentimentTarget("cnn_graphdata", "https://production.dataviz.cnn.io/index/fearandgreed/graphdata"),
    SentimentTarget("github_mirror", "https://raw.githubusercontent.com/rem79/fear-greed-index/main/data.json"),
    SentimentTarget("cnn_page", "https://edition.cnn.com/markets/fear-and-greed"),
)

DEFAULT_PROXIES: tuple[Proxy, ...] = (
    Proxy("direct", "{url}", encode=False),
    Proxy("allorigins_get", "https://api.allorigins.win/get?url={url}"),
    Proxy("allorigins_raw", "https://api.allorigins.win/raw?url={url}"),
    Proxy("corsproxy", "https://corsproxy.io/?url={url}"),
)


# ── Value helpers ───────────────────────────────────────────────

def round_score(value: Any) -> int | None:
    """Round half-up to int; ``None`` when not a finite number in 0–100."""
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f) or math.isinf(f):
        return None
    v = int(math.floor(f + 0.5))
    if not 0 <= v <= 100:
        return None
    return v


def rating_for_score(value: int) -> str:
    """CNN's published bands, used when a payload carries no rating."""
    if value < 25:
        return "EXTREME FEAR"
    if value < 45:
        return "FEAR"
    if value <= 55:
        return "NEUTRAL"
    if value <= 75:
        return "GREED"
    return "EXTREME GREED"


def to_calendar_date(value: Any) -> date | None:
    """Epoch seconds/milliseconds or an ISO string → UTC calendar date."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        ts = float(value)
        if ts > 1e11:  # milliseconds
            ts /= 1000.0
        try:
            return datetime.fromtimestamp(ts, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.date()


def _normalise_status(rating: Any, value: int) -> str:
    text = str(rating or "").strip()
    return text.upper() if text else rating_for_score(value)


def unwrap_envelope(body: str) -> str:
    """Return the forwarded payload when a relay wrapped it, else *body*."""
    stripped = body.lstrip()
    if not stripped.startswith("{"):
        return body
    try:
        doc = json.loads(stripped)
    except ValueError:
        return body
    if isinstance(doc, dict):
        for key in ENVELOPE_FIELDS:
            inner = doc.get(key)
            if isinstance(inner, str):
                return inner
            if isinstance(inner, (dict, list)):
                return json.dumps(inner)
    return body


# ── Parsers ─────────────────────────────────────────────────────

class JsonSentimentParser:
    """Structured payloads.

    Understands the CNN graph-data shape (``fear_and_greed`` plus the
    parallel ``fear_and_greed_historical.data[{x, y}]`` series) and the
    community mirror shape (``stock{score, rating, lastUpdated}``).
    """

    name = "json"

    def accepts(self, text: str) -> bool:
        head = text.lstrip()[:1]
        return head in ("{", "[")

    def parse(self, text: str) -> SentimentResult | None:
        try:
            doc = json.loads(text)
        except ValueError:
            return None
        if not isinstance(doc, dict):
            return None

        fg = doc.get("fear_and_greed")
        if isinstance(fg, dict) and "score" in fg:
            current = self._snapshot(fg.get("score"), fg.get("rating"), fg.get("timestamp"))
            if current is None:
                return None
            hist_block = doc.get("fear_and_greed_historical")
            raw_hist = hist_block.get("data") if isinstance(hist_block, dict) else None
            return SentimentResult(current=current, history=self._history(raw_hist))

        stock = doc.get("stock")
        if isinstance(stock, dict) and "score" in stock:
            current = self._snapshot(stock.get("score"), stock.get("rating"), stock.get("lastUpdated"))
            if current is None:
                return None
            return SentimentResult(current=current)
        return None

    @staticmethod
    def _snapshot(score: Any, rating: Any, stamp: Any) -> SentimentSnapshot | None:
        value = round_score(score)
        if value is None:
            return None
        return SentimentSnapshot(
            value=value,
            status=_normalise_status(rating, value),
            as_of=to_calendar_date(stamp),
        )

    @staticmethod
    def _history(raw: Any) -> list[SentimentPoint]:
        if not isinstance(raw, list):
            return []
        by_date: dict[date, int] = {}
        for item in raw:
            if not isinstance(item, dict):
                continue
            d = to_calendar_date(item.get("x"))
            v = round_score(item.get("y"))
            if d is None or v is None:
                continue
            by_date[d] = v  # several points per day: the latest wins
        return [SentimentPoint(date=d, value=v) for d, v in sorted(by_date.items())]


class HtmlSentimentParser:
    """Last-resort scrape of the score embedded in the page; history-less."""

    name = "html"

    _SCORE_RES: tuple[re.Pattern[str], ...] = (
        re.compile(r'"score"\s*:\s*"?(\d{1,3}(?:\.\d+)?)'),
        re.compile(r'dial-number-value[^>]*>\s*(\d{1,3})\s*<', re.IGNORECASE),
    )
    _RATING_RES: tuple[re.Pattern[str], ...] = (
        re.compile(r'"rating"\s*:\s*"([A-Za-z ]{3,20})"'),
        re.compile(r'label--(extreme-fear|fear|neutral|greed|extreme-greed)', re.IGNORECASE),
    )

    def accepts(self, text: str) -> bool:
        head = text.lstrip()[:_SNIFF_BYTES].lower()
        return head.startswith("<") or "<html" in head or "<!doctype html" in head

    def parse(self, text: str) -> SentimentResult | None:
        value: int | None = None
        for pat in self._SCORE_RES:
            m = pat.search(text)
            if m:
                value = round_score(m.group(1))
                if value is not None:
                    break
        if value is None:
            return None
        rating: str | None = None
        for pat in self._RATING_RES:
            m = pat.search(text)
            if m:
                rating = m.group(1).replace("-", " ")
                break
        return SentimentResult(
            current=SentimentSnapshot(value=value, status=_normalise_status(rating, value)),
        )


DEFAULT_PARSERS: tuple[Any, ...] = (JsonSentimentParser(), HtmlSentimentParser())


# ── Resolver ────────────────────────────────────────────────────

class SentimentResolver:
    """Short-circuit priority resolution over the (target × proxy) matrix."""

    def __init__(
        self,
        targets: Iterable[SentimentTarget] = DEFAULT_TARGETS,
        proxies: Iterable[Proxy] = DEFAULT_PROXIES,
        *,
        parsers: Iterable[Any] = DEFAULT_PARSERS,
        client: httpx.Client | None = None,
        timeout_s: float = 8.0,
    ) -> None:
        self.targets = tuple(targets)
        self.proxies = tuple(proxies)
        self.parsers = tuple(parsers)
        self.timeout_s = timeout_s
        self.client = client or httpx.Client(
            follow_redirects=True,
            headers={
                "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) tqqq-phase/1.0",
                "Accept": "application/json, text/html;q=0.9, */*;q=0.8",
            },
        )
        # Labels of the pairs tried during the most recent resolve().
        self.last_attempts: list[str] = []

    def attempt_matrix(self) -> list[tuple[SentimentTarget, Proxy]]:
        """Every (target, proxy) pair in priority order, target-major."""
        return [(t, p) for t in self.targets for p in self.proxies]

    def resolve(self) -> SentimentResult | None:
        """First successful reading, or ``None`` when every pair failed.

        ``None`` means "unavailable this cycle"; callers keep the
        previous cached value.
        """
        self.last_attempts = []
        for target, proxy in self.attempt_matrix():
            label = f"{target.name} via {proxy.name}"
            self.last_attempts.append(label)
            try:
                result = self._try_pair(target, proxy)
            except Exception as exc:
                logger.warning("Sentiment %s failed unexpectedly: %s", label, exc)
                continue
            if result is not None:
                logger.info(
                    "Sentiment resolved from %s: %d (%s), %d history points",
                    label, result.current.value, result.current.status, len(result.history),
                )
                return SentimentResult(current=result.current, history=result.history, source=label)
        logger.warning("Sentiment unavailable: all %d source/proxy combinations failed",
                       len(self.last_attempts))
        return None

    def _try_pair(self, target: SentimentTarget, proxy: Proxy) -> SentimentResult | None:
        url = proxy.wrap(target.url)
        try:
            r = self.client.get(url, timeout=self.timeout_s)
        except httpx.HTTPError as exc:
            logger.debug("Sentiment %s via %s failed: %s", target.name, proxy.name, exc)
            return None
        if not 200 <= r.status_code < 300:
            logger.debug("Sentiment %s via %s: HTTP %d", target.name, proxy.name, r.status_code)
            return None
        text = unwrap_envelope(r.text)
        return self.parse_payload(text)

    def parse_payload(self, text: str) -> SentimentResult | None:
        """Run *text* through the parser chain; first usable result wins."""
        if not text or not text.strip():
            return None
        for parser in self.parsers:
            if not parser.accepts(text):
                continue
            try:
                result = parser.parse(text)
            except (ValueError, TypeError, KeyError, AttributeError) as exc:
                logger.debug("Sentiment parser %s rejected payload: %s", parser.name, exc)
                continue
            if result is not None:
                return result
        return None

    def close(self) -> None:
        self.client.close()
