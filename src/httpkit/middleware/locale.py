"""
=============================================================================
LOCALE NEGOTIATION
=============================================================================

Picks the best supported language for the Accept-Language header and
stores it in the request context:

    supported = ["fr", "en", "es"]        # first entry is the fallback

    Accept-Language: es-MX,es;q=0.9,en;q=0.5   →  Locale("es", "ES")
    Accept-Language: de-DE                     →  Locale("fr", "FR")
    (no header)                                →  Locale("fr", "FR")

    def handler(w, r):
        locale = locale_from_request(r)
        encode(w, r, 200, {"greeting": GREETINGS[locale.language]})

=============================================================================
REGION
=============================================================================

The region comes from the supported language that matched, never from
the client's tag: "en-FR" against supported ["fr", "en"] gives
Locale("en", "US"), the likely region for English according to the CLDR
data in babel. A supported entry that carries its own region ("en-GB")
keeps it.

=============================================================================
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from babel.core import get_global, parse_locale

from ..http.context import LOCALE_KEY, RequestContext
from ..http.request import Request
from ..http.writer import ResponseWriter
from .base import Handler, Middleware


logger = logging.getLogger(__name__)


DEFAULT_LANGUAGE = "en"

DEFAULT_REGION = "US"

DEFAULT_SUPPORTED = (DEFAULT_LANGUAGE,)


@dataclass(frozen=True)
class Locale:
    language: str
    region: str

    def __str__(self) -> str:
        return f"{self.language}-{self.region}" if self.region else self.language


def _parse(tag: str) -> Tuple[str, str, str]:
    """(language, region, script) of a BCP 47 tag; ValueError if malformed."""
    language, region, script = parse_locale(tag.replace("_", "-"), sep="-")[:3]
    return language, region or "", script or ""


def split_tag(tag: str) -> Tuple[str, str]:
    """"en-us" → ("en", "US"); script and variant subtags are dropped."""
    language, region, _ = _parse(tag)
    return language, region


def likely_region(tag: str) -> str:
    """
    Region of a tag, or the most likely one for its language.

        "en" → "US", "ca" → "ES", "zh-Hant" → "TW", "en-GB" → "GB"

    Uses the CLDR likely-subtags data shipped with babel; "" when CLDR
    has no entry for the language.
    """
    language, region, script = _parse(tag)
    if region:
        return region

    likely = get_global("likely_subtags")
    for key in (f"{language}_{script}", language):
        if key in likely:
            return parse_locale(likely[key])[1] or ""
    return ""


def parse_accept_language(header: str) -> List[str]:
    """
    Language tags ordered by preference.

    q=0 entries are dropped; ties keep header order; "*" is kept and
    matches the fallback.
    """
    weighted = []
    for index, item in enumerate(header.split(",")):
        item = item.strip()
        if not item:
            continue

        tag, *params = [p.strip() for p in item.split(";")]
        q = 1.0
        for param in params:
            name, _, value = param.partition("=")
            if name.strip().lower() == "q":
                try:
                    q = float(value)
                except ValueError:
                    q = 0.0

        if q > 0 and tag:
            weighted.append((-q, index, tag))

    return [tag for _, _, tag in sorted(weighted)]


class LocaleMatcher:
    """
    Matches requested tags against a fixed list of supported ones.

    Raises ValueError for an empty or malformed supported list; malformed
    requested tags are skipped.
    """

    def __init__(self, supported: Sequence[str] = DEFAULT_SUPPORTED):
        if not supported:
            raise ValueError("at least one supported language is required")
        self.supported = [split_tag(tag) for tag in supported]
        self._locales = [
            Locale(language=language, region=likely_region(tag))
            for tag, (language, _) in zip(supported, self.supported)
        ]

    def match(self, requested: Sequence[str]) -> Locale:
        for tag in requested:
            if tag == "*":
                break

            try:
                language, region = split_tag(tag)
            except ValueError:
                logger.debug(f"ignoring malformed language tag {tag!r}")
                continue

            # Exact language-region first, then same language
            for i, (lang, reg) in enumerate(self.supported):
                if lang == language and reg and reg == region:
                    return self._locales[i]
            for i, (lang, _) in enumerate(self.supported):
                if lang == language:
                    return self._locales[i]

        return self._locales[0]


def locale_from_context(ctx: Optional[RequestContext]) -> Locale:
    """The negotiated locale, en-US when none was stored."""
    locale = ctx.get(LOCALE_KEY) if ctx is not None else None
    if isinstance(locale, Locale):
        return locale
    return Locale(language=DEFAULT_LANGUAGE, region=DEFAULT_REGION)


def locale_from_request(r: Request) -> Locale:
    return locale_from_context(r.context)


class LocaleMiddleware(Middleware):
    """Stores the negotiated Locale under LOCALE_KEY."""

    def __init__(self, supported: Sequence[str] = DEFAULT_SUPPORTED):
        self.matcher = LocaleMatcher(supported)

    def process(self, w: ResponseWriter, r: Request, next_handler: Handler) -> None:
        header = r.get_header("Accept-Language")
        locale = self.matcher.match(parse_accept_language(header))
        logger.debug(f"Accept-Language {header!r} negotiated as {locale}")

        r.context.set(LOCALE_KEY, locale)
        w.add_header("Vary", "Accept-Language")
        next_handler(w, r)
