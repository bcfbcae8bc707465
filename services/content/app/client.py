"""
Content Service — コンテンツ API クライアント

外部のコンテンツ API (NEXT_PUBLIC_API_URL) から記事・作例・ページを取得する。

レスポンスの形はエンドポイントごとに揃っていない:
  - {"success": true, "data": ...}  （記事など）
  - 素の配列 / オブジェクト          （作業種別ページ、科目など）
どちらも unwrap_envelope で中身だけを取り出す。
リトライ・サーキットブレーカーは持たない。
"""

import logging

import httpx

logger = logging.getLogger(__name__)


class ContentNotFound(Exception):
    """上流が 404 / 非 OK / success: false を返した"""

    def __init__(self, path: str, status_code: int | None = None):
        super().__init__(f"Content not found: {path} ({status_code})")
        self.path = path
        self.status_code = status_code


def unwrap_envelope(payload, path: str = ""):
    """{success, data} 形式なら data を、それ以外はそのまま返す。"""
    if isinstance(payload, dict) and "success" in payload:
        if not payload["success"]:
            raise ContentNotFound(path)
        return payload.get("data")
    return payload


class ContentClient:
    def __init__(
        self,
        api_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def fetch(self, path: str, params: dict | None = None):
        """
        GET {API_URL}/api/{path}

        非 OK レスポンスは ContentNotFound、通信エラーは httpx.HTTPError のまま。
        """
        url = f"{self.api_url}/api/{path.lstrip('/')}"
        async with self._client() as client:
            resp = await client.get(url, params=params)
        if resp.status_code == 404:
            logger.info("Content not found: %s", url)
            raise ContentNotFound(path, 404)
        if not resp.is_success:
            logger.error("Fetch failed with status %s: %s", resp.status_code, url)
            raise ContentNotFound(path, resp.status_code)
        return unwrap_envelope(resp.json(), path)

    # ── ブログ ──────────────────────────────────

    async def get_article(self, category: str, slug: str) -> dict:
        return await self.fetch(f"articles/{category}/{slug}")

    async def get_recent_articles(self) -> list[dict]:
        return await self.fetch("articles/recent")

    async def get_articles_by_category(self, category: str) -> list[dict]:
        return await self.fetch(f"articles/category/{category}")

    # ── 作例 (Examples) ─────────────────────────

    async def get_example(
        self, locale: str, level: str, work_type: str, subject: str, slug: str
    ) -> dict:
        return await self.fetch(f"examples/{locale}/{level}/{work_type}/{subject}/{slug}")

    async def get_examples_by_work_type(
        self, locale: str, level: str, work_type: str
    ) -> list[dict]:
        return await self.fetch(f"examples/{locale}/{level}/{work_type}")

    async def get_examples_by_level(self, locale: str, level: str) -> list[dict]:
        return await self.fetch(f"examples/{locale}/{level}")

    async def get_thesis_example(self, category: str, slug: str) -> dict:
        return await self.fetch(f"examples/thesis-examples/{category}/{slug}")

    # ── 作業種別ページ / 分類 ───────────────────

    async def get_work_type_page(self, work_type: str) -> dict:
        return await self.fetch(f"work-type-pages/{work_type}")

    async def get_work_types(self) -> list[dict]:
        return await self.fetch("work-types")

    async def get_subjects(self, level: str | None = None) -> list[dict]:
        params = {"level": level} if level else None
        return await self.fetch("examples/subjects", params=params)
