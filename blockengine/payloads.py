"""
payloads.py - Always-on scripts pushed alongside the compiled rules.

The scripts are opaque to the engine: it only knows where each one is
injected (document start/end) and in which frames. They catch what the
declarative rules cannot: ads inserted after load, YouTube's in-player ads,
consent dialogs.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum

from blockengine.embedded import HIDE_SELECTORS


class InjectionPoint(str, Enum):
    DOCUMENT_START = "documentStart"
    DOCUMENT_END = "documentEnd"


@dataclass(frozen=True)
class InjectedScript:
    """A script payload and where the renderer should inject it."""
    name: str
    source: str
    injection_point: InjectionPoint = InjectionPoint.DOCUMENT_END
    main_frame_only: bool = False


_EXTRA_COSMETIC_SELECTORS = (
    '[id*="cookie-popup"]', ".ad-overlay", "#ad-overlay",
    '[class*="interstitial"]', '[id*="ad-popup"]', '[class*="ad-popup"]',
)

_COSMETIC_TEMPLATE = """\
(function() {
    'use strict';
    if (window.__adBlockInjected) return;
    window.__adBlockInjected = true;

    const selectors = __SELECTORS__;

    function hideElements() {
        let count = 0;
        try {
            document.querySelectorAll(selectors.join(',')).forEach(function(el) {
                if (el.style.display !== 'none') {
                    el.style.setProperty('display', 'none', 'important');
                    el.style.setProperty('visibility', 'hidden', 'important');
                    el.style.setProperty('height', '0', 'important');
                    el.style.setProperty('overflow', 'hidden', 'important');
                    count++;
                }
            });
        } catch (e) {}

        if (count > 0) {
            try {
                window.webkit.messageHandlers.adBlocked.postMessage({count: count, url: location.hostname});
            } catch (e) {}
        }
    }

    hideElements();
    if (document.readyState === 'loading') {
        document.addEventListener('DOMContentLoaded', hideElements);
    }
    window.addEventListener('load', function() {
        hideElements();
        [500, 1500, 3000, 5000].forEach(function(ms) { setTimeout(hideElements, ms); });
    });

    let checks = 0;
    const observer = new MutationObserver(function() {
        if (++checks >= 200) { observer.disconnect(); return; }
        hideElements();
    });
    observer.observe(document.documentElement, {childList: true, subtree: true});
    setTimeout(function() { observer.disconnect(); }, 60000);
})();
"""

COSMETIC_FILTER_SCRIPT = _COSMETIC_TEMPLATE.replace(
    "__SELECTORS__", json.dumps(list(HIDE_SELECTORS) + list(_EXTRA_COSMETIC_SELECTORS))
)

YOUTUBE_AD_SKIP_SCRIPT = """\
(function() {
    'use strict';
    if (!location.hostname.includes('youtube.com')) return;
    if (window.__ytAdSkip) return;
    window.__ytAdSkip = true;

    const timer = setInterval(function() {
        var skip = document.querySelector('.ytp-skip-ad-button, .ytp-ad-skip-button, .ytp-ad-skip-button-modern, [class*="skip-button"]');
        if (skip) { skip.click(); return; }

        var video = document.querySelector('video');
        if (video && document.querySelector('.ad-showing, .ytp-ad-player-overlay')) {
            video.currentTime = video.duration || 999;
            video.playbackRate = 16;
        }

        document.querySelectorAll('.ytp-ad-overlay-container, .ytp-ad-text-overlay, #player-ads').forEach(function(el) {
            el.remove();
        });
    }, 500);
    setTimeout(function() { clearInterval(timer); }, 120000);
})();
"""

COOKIE_DISMISS_SCRIPT = """\
(function() {
    'use strict';
    const banners = [
        '#onetrust-consent-sdk', '#onetrust-banner-sdk',
        '.cookie-consent', '.cookie-banner', '.cookie-notice', '#cookie-notice',
        '#cookie-law-info-bar', '.cc-banner', '.cc-window', '#CybotCookiebotDialog',
        '.js-cookie-consent', '#gdpr-cookie-notice', '.cookie-popup', '#cookie-popup',
        '.cookie-modal', '.consent-banner', '#consent-banner', '.gdpr-banner',
        '#gdpr-banner', '.privacy-banner', '#privacy-notice'
    ];
    const acceptButtons = [
        '.cc-accept', '.cc-dismiss', '.cc-allow', '#onetrust-accept-btn-handler',
        '#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowAll',
        'button[data-cookie-accept]', 'button[data-gdpr-accept]'
    ];

    function dismiss() {
        document.querySelectorAll(acceptButtons.join(',')).forEach(function(b) { b.click(); });
        document.querySelectorAll(banners.join(',')).forEach(function(el) { el.remove(); });
        document.querySelectorAll('.cookie-overlay, .consent-overlay, .gdpr-overlay').forEach(function(el) { el.remove(); });
        if (document.body) document.body.style.overflow = '';
        document.documentElement.style.overflow = '';
    }

    if (document.readyState === 'loading') {
        document.addEventListener('DOMContentLoaded', function() { setTimeout(dismiss, 500); });
    } else {
        setTimeout(dismiss, 500);
    }
    const observer = new MutationObserver(function() { setTimeout(dismiss, 300); });
    observer.observe(document.documentElement, {childList: true, subtree: true});
    setTimeout(function() { observer.disconnect(); }, 10000);
})();
"""

ALWAYS_ON_SCRIPTS: tuple[InjectedScript, ...] = (
    InjectedScript("cosmetic-filter", COSMETIC_FILTER_SCRIPT),
    InjectedScript("youtube-ad-skip", YOUTUBE_AD_SKIP_SCRIPT, main_frame_only=True),
    InjectedScript("cookie-dismiss", COOKIE_DISMISS_SCRIPT),
)
