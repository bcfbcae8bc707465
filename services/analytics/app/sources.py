"""
Analytics Service — 流入元とデバイスの判定

リファラ URL を流入チャネルに、User-Agent をブラウザ / OS / デバイス種別に
分類する純粋関数。
"""

from urllib.parse import urlsplit

SEARCH_ENGINES = ("google", "bing", "yahoo", "yandex", "duckduckgo")
SOCIAL_HOSTS = (
    "facebook.com",
    "fb.com",
    "instagram.com",
    "twitter.com",
    "x.com",
    "t.co",
    "linkedin.com",
    "tiktok.com",
)
SOCIAL_MARKERS = ("ttclid=", "utm_source=tiktok", "utm_source=facebook")
PAID_MARKERS = ("utm_medium=cpc", "utm_source=google", "gclid=", "fbclid=")

KNOWN_SOURCES = ("direct", "organic", "social", "paid", "referral")


def _host(url: str) -> str:
    host = urlsplit(url if "//" in url else f"//{url}").hostname or ""
    return host.removeprefix("www.").removeprefix("m.")


def map_referrer_to_source(referrer: str | None) -> str:
    """リファラを direct / organic / social / paid / referral のいずれかにする。"""
    if not referrer:
        return "direct"
    url = referrer.strip().lower()
    if url in KNOWN_SOURCES:
        return url

    # 広告クリックは検索エンジン経由でも paid
    if any(marker in url for marker in PAID_MARKERS):
        return "paid"
    host = _host(url)
    if any(host == h or host.endswith("." + h) for h in SOCIAL_HOSTS):
        return "social"
    if any(marker in url for marker in SOCIAL_MARKERS):
        return "social"
    if any(name in host.split(".") for name in SEARCH_ENGINES):
        return "organic"
    return "referral"


def detect_device(user_agent: str | None) -> dict:
    ua = (user_agent or "").lower()

    if "edg/" in ua:
        browser = "Edge"
    elif "opr/" in ua or "opera" in ua:
        browser = "Opera"
    elif "chrome/" in ua or "crios/" in ua:
        browser = "Chrome"
    elif "firefox/" in ua or "fxios/" in ua:
        browser = "Firefox"
    elif "safari/" in ua:
        browser = "Safari"
    else:
        browser = "Unknown"

    # iOS の UA は "like Mac OS X" を含むので先に判定する
    if "iphone" in ua or "ipad" in ua:
        os_name = "iOS"
    elif "android" in ua:
        os_name = "Android"
    elif "windows" in ua:
        os_name = "Windows"
    elif "mac os" in ua:
        os_name = "macOS"
    elif "linux" in ua:
        os_name = "Linux"
    else:
        os_name = "Unknown"

    if "ipad" in ua or "tablet" in ua or ("android" in ua and "mobile" not in ua):
        device = "tablet"
    elif "mobile" in ua or "iphone" in ua:
        device = "mobile"
    elif ua:
        device = "desktop"
    else:
        device = "unknown"

    return {"browser": browser, "os": os_name, "device": device}
