"""
embedded.py - Baseline rules shipped with the engine.

These compile at launch with no network access, so protection is immediate
even on first run or offline. Downloaded lists only ever add to them.

Sources:
    EMBEDDED_FILTER_TEXT   filter-list text, converted by parser + converter
    BLOCKED_DOMAINS        hand-maintained ad/tracker domains; the ONE list
                           feeding both the domain-block records and the
                           fallback matcher's lookup set
    PATH_RECORDS           URL-path block rules, already in record form
    CSS_HIDE_RECORDS       element-hiding rules, already in record form
    FALLBACK_PATH_KEYWORDS path substrings checked by the fallback matcher
"""

from __future__ import annotations

from typing import Final

from blockengine.models import (
    Action,
    ActionKind,
    CompiledRuleRecord,
    PartyConstraint,
    Trigger,
)


# =============================================================================
# FILTER TEXT
# =============================================================================

ADGUARD_TURKISH_SUBSET: Final[str] = """\
! AdGuard Turkish Filter (subset)
||reklam.hurriyet.com.tr^
||ads.sahibinden.com^
||ad.mncdn.com^
||reklam.mynet.com^
||ads.milliyet.com.tr^
||ads.sozcu.com.tr^
||i.hizliresim.com^$third-party
||reklamstore.com^
||reklam.internethaber.com^
||ads.ensonhaber.com^
||istatistik.hurriyet.com.tr^
||ads.haberturk.com^
||reklam.posta.com.tr^
||adriver.yandex.com.tr^
||hedef.hurriyet.com.tr^
||analytics.hurriyet.com.tr^
##.reklam-banner
##.ad-banner
##[class*="reklam"]
##[id*="reklam"]
##.sponsor-banner
##.sponsorlu-icerik
##.publicidade
"""

ADGUARD_BASE_SUBSET: Final[str] = """\
! AdGuard Base Filter (critical rules subset)
||doubleclick.net^
||googlesyndication.com^$third-party
||googleadservices.com^
||google-analytics.com^$third-party
||googletagmanager.com^$third-party
||facebook.net^$third-party
||facebook.com/tr^$third-party
||hotjar.com^$third-party
||clarity.ms^$third-party
||segment.com^$third-party
||mixpanel.com^$third-party
||amplitude.com^$third-party
||fullstory.com^$third-party
||crazyegg.com^$third-party
||mouseflow.com^$third-party
||taboola.com^$third-party
||outbrain.com^$third-party
||amazon-adsystem.com^$third-party
||criteo.com^$third-party
||adnxs.com^$third-party
||rubiconproject.com^$third-party
||openx.net^$third-party
||pubmatic.com^$third-party
||mopub.com^$third-party
||adjust.com^$third-party
||appsflyer.com^$third-party
||branch.io^$third-party
||onesignal.com^$third-party
||pushwoosh.com^$third-party
||scorecardresearch.com^$third-party
||quantserve.com^$third-party
||newrelic.com^$third-party
##.adsbygoogle
##ins.adsbygoogle
##[class*="ad-container"]
##[class*="ad-wrapper"]
##[class*="advertisement"]
##[class*="sponsored"]
##.ytp-ad-module
##.ytp-ad-overlay-container
##.video-ads
##.ad-showing
"""

EMBEDDED_FILTER_TEXT: Final[tuple[str, ...]] = (ADGUARD_TURKISH_SUBSET, ADGUARD_BASE_SUBSET)


# =============================================================================
# DOMAIN TABLE
# =============================================================================

BLOCKED_DOMAINS: Final[tuple[str, ...]] = (
    # Ad exchanges and networks
    "doubleclick.net", "googlesyndication.com", "googleadservices.com",
    "google-analytics.com", "googletagmanager.com", "googletagservices.com",
    "adnxs.com", "adsrvr.org", "advertising.com", "adform.net",
    "taboola.com", "outbrain.com", "criteo.com", "criteo.net",
    "moatads.com", "amazon-adsystem.com", "rubiconproject.com",
    "pubmatic.com", "openx.net", "casalemedia.com", "bidswitch.net",
    "smartadserver.com", "serving-sys.com", "yieldmanager.com",
    "2mdn.net", "zedo.com", "adtechus.com", "spotxchange.com",
    "sharethrough.com", "contextweb.com", "lijit.com", "adblade.com",
    "medianet.com", "revcontent.com", "mgid.com",
    # Mobile ad SDKs
    "adcolony.com", "applovin.com", "vungle.com", "admob.com",
    "chartboost.com", "inmobi.com", "smaato.net",
    # Trackers
    "nr-data.net", "quantserve.com", "scorecardresearch.com", "bluekai.com",
    # Pop-under and adult ad networks
    "exoclick.com", "popads.net", "propellerads.com", "trafficjunky.com",
    # Specific hosts of otherwise legitimate domains
    "pagead2.googlesyndication.com", "securepubads.g.doubleclick.net",
    "tpc.googlesyndication.com", "s0.2mdn.net",
    "cdn.taboola.com", "trc.taboola.com",
    "widgets.outbrain.com", "log.outbrain.com",
    "static.ads-twitter.com", "analytics.twitter.com",
    "pixel.facebook.com", "an.facebook.com",
    "ads.yahoo.com", "gemini.yahoo.com",
)


# =============================================================================
# RECORD TABLES
# =============================================================================

def _block(url_pattern: str, third_party: bool = False) -> CompiledRuleRecord:
    party = PartyConstraint.THIRD_PARTY if third_party else PartyConstraint.ANY
    return CompiledRuleRecord(Trigger(url_pattern, party=party), Action(ActionKind.BLOCK))


def _hide(selector: str) -> CompiledRuleRecord:
    return CompiledRuleRecord(Trigger("^https?://"), Action(ActionKind.HIDE_SELECTOR, selector))


PATH_RECORDS: Final[tuple[CompiledRuleRecord, ...]] = (
    _block(r"^https?://([^/]+\.)?facebook\.net[/:].*fbads", third_party=True),
    _block("/pagead/", third_party=True),
    _block("/adserver/", third_party=True),
    _block(r"/ads\.js"),
    _block(r"/ad\.js"),
    _block(r"/adsbygoogle\.js"),
    _block("/show_ads"),
    _block("/adview"),
    _block("/ad_iframe"),
    _block("/adfetch"),
    _block("/adhandler"),
    _block(r"/gpt\.js"),
    _block("/pubads"),
    _block("/gampad/"),
    _block("/sponsor"),
    _block("/_ad_", third_party=True),
    _block(r"tracking\.js", third_party=True),
    _block(r"tracker\.js", third_party=True),
    _block(r"analytics\.js", third_party=True),
    _block(r"/pixel\.gif", third_party=True),
    _block(r"/pixel\.png", third_party=True),
    _block(r"/beacon\.", third_party=True),
)

HIDE_SELECTORS: Final[tuple[str, ...]] = (
    ".adsbygoogle", "ins.adsbygoogle",
    '[id^="google_ads"]', '[id^="div-gpt-ad"]',
    '[class*="ad-container"]', '[class*="ad-wrapper"]', '[class*="ad-banner"]',
    '[class*="adunit"]', '[class*="ad-slot"]', '[class*="ad_unit"]',
    '[class*="sponsored"]', '[class*="ad-placement"]',
    '[id*="taboola"]', '[class*="taboola"]',
    '[id*="outbrain"]', '[class*="outbrain"]',
    ".trc_related_container", "#taboola-below-article",
    "amp-ad", "AMP-AD",
    "#cookie-banner", "#cookie-notice",
    '[class*="cookie-consent"]', '[class*="cookie-banner"]', '[class*="cookie-notice"]',
    '[id*="consent-banner"]', '[class*="consent-banner"]', '[class*="gdpr"]',
    'iframe[src*="doubleclick"]', 'iframe[src*="googlesyndication"]',
    'iframe[src*="adnxs"]', 'iframe[src*="taboola"]',
)

CSS_HIDE_RECORDS: Final[tuple[CompiledRuleRecord, ...]] = tuple(_hide(s) for s in HIDE_SELECTORS)


# =============================================================================
# FALLBACK KEYWORDS
# =============================================================================

# First-party ad, sponsor and gambling paths no domain list covers
FALLBACK_PATH_KEYWORDS: Final[tuple[str, ...]] = (
    "/pagead/", "/adserver/", "/gampad/", "/show_ads", "/adview",
    "/sponsor", "/sponsored-", "/reklam/",
    "/bahis", "/casino", "/betting", "/iddaa",
)
