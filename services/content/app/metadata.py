"""
Content Service — ページメタデータ

ロケール (pl / en) に応じたタイトル・説明文と、
canonical / 言語別 alternates の URL を組み立てる。
"""

LOCALES = ("pl", "en")

ARTICLE_NOT_FOUND = {
    "title": "Artykuł nie znaleziony | eCopywriting.pl",
    "description": "Przepraszamy, ale nie mogliśmy znaleźć szukanego artykułu.",
}


def localized(data: dict, field: str, locale: str):
    """pl はそのままのフィールド、それ以外は <field>En を使う。"""
    if locale == "pl":
        return data.get(field)
    return data.get(f"{field}En")


def alternates(base_url: str, locale: str, path: str) -> dict:
    base_url = base_url.rstrip("/")
    return {
        "canonical": f"{base_url}/{locale}{path}",
        "languages": {code: f"{base_url}/{code}{path}" for code in LOCALES},
    }


def work_type_page_metadata(page: dict, locale: str, work_type: str, base_url: str) -> dict:
    return {
        "title": localized(page, "metaTitle", locale),
        "description": localized(page, "metaDescription", locale),
        "metadataBase": base_url,
        "alternates": alternates(base_url, locale, f"/{work_type}"),
    }


def article_metadata(article: dict | None) -> dict:
    if not article:
        return dict(ARTICLE_NOT_FOUND)
    return {
        "title": f"{article.get('title')} | eCopywriting.pl",
        "description": article.get("excerpt"),
    }


def example_metadata(example: dict, locale: str, path: str, base_url: str) -> dict:
    return {
        "title": example.get("metaTitle") or example.get("title"),
        "description": example.get("metaDescription") or example.get("description"),
        "metadataBase": base_url,
        "alternates": alternates(base_url, locale, path),
    }
