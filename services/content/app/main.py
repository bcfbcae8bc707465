"""
Content Service — BFF (Backend for Frontend)

ロケール付きのページ（ブログ記事、作例、作業種別ページ）を
外部コンテンツ API から取得し、フロントエンドが描画しやすい形で返す。

  ┌──────────┐     ┌─────────┐     ┌──────────────────┐
  │ Next.js  │────▶│ Content │────▶│ Content REST API │
  │ Frontend │     │  BFF    │     │ (NEXT_PUBLIC_    │
  └──────────┘     └─────────┘     │  API_URL)        │
                                   └──────────────────┘

上流が 404 / 非 OK を返したら 404（Next.js の notFound() に相当）、
メタデータは空オブジェクトを返す。通信エラーは 502。
"""

import asyncio
import logging
import os

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import metadata
from .client import ContentClient, ContentNotFound

API_URL = os.environ.get("NEXT_PUBLIC_API_URL", "http://localhost:5000")
BASE_URL = os.environ.get("NEXT_PUBLIC_BASE_URL", "https://www.smart-edu.ai")

logger = logging.getLogger(__name__)

content_client = ContentClient(API_URL)

app = FastAPI(title="Content Service - BFF")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(httpx.HTTPError)
async def upstream_error_handler(request: Request, exc: httpx.HTTPError):
    logger.error("Upstream content API error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"success": False, "message": "Content API unavailable"},
    )


async def _or_404(coro):
    try:
        return await coro
    except ContentNotFound:
        raise HTTPException(404, "Not found")


# ── ブログ ──────────────────────────────────────


@app.get("/api/content/{locale}/blog/{category}/{slug}")
async def get_article_page(locale: str, category: str, slug: str):
    """
    記事ページ: 記事本体と最近の記事を並列に取得する。

    どちらか一方でも失敗すればページ全体が失敗する（部分成功は無い）。
    """
    article, recent = await _or_404(
        asyncio.gather(
            content_client.get_article(category, slug),
            content_client.get_recent_articles(),
        )
    )
    if not article:
        raise HTTPException(404, "Article not found")
    return {"article": article, "recentArticles": recent}


@app.get("/api/content/{locale}/blog/{category}/{slug}/metadata")
async def get_article_metadata(locale: str, category: str, slug: str):
    try:
        article = await content_client.get_article(category, slug)
    except ContentNotFound:
        article = None
    return metadata.article_metadata(article)


@app.get("/api/content/{locale}/blog/{category}")
async def get_category_page(locale: str, category: str):
    articles = await _or_404(content_client.get_articles_by_category(category))
    return {"category": category, "articles": articles}


# ── 作例 (Examples) ─────────────────────────────


@app.get("/api/content/{locale}/examples/{level}/{work_type}/{subject}/{slug}")
async def get_example_page(
    locale: str, level: str, work_type: str, subject: str, slug: str
):
    example = await _or_404(
        content_client.get_example(locale, level, work_type, subject, slug)
    )
    path = f"/examples/{level}/{work_type}/{subject}/{slug}"
    return {
        "example": example,
        "metadata": metadata.example_metadata(example, locale, path, BASE_URL),
    }


@app.get("/api/content/{locale}/examples/{level}/{work_type}")
async def get_examples_by_work_type(locale: str, level: str, work_type: str):
    return await _or_404(
        content_client.get_examples_by_work_type(locale, level, work_type)
    )


@app.get("/api/content/{locale}/examples/{level}")
async def get_examples_by_level(locale: str, level: str):
    return await _or_404(content_client.get_examples_by_level(locale, level))


@app.get("/api/content/{locale}/thesis-examples/{category}/{slug}")
async def get_thesis_example(locale: str, category: str, slug: str):
    return await _or_404(content_client.get_thesis_example(category, slug))


@app.get("/api/content/taxonomy")
async def get_taxonomy(level: str | None = None):
    """新規注文フォーム用: 作業種別と科目を並列に取得する。"""
    work_types, subjects = await _or_404(
        asyncio.gather(
            content_client.get_work_types(),
            content_client.get_subjects(level),
        )
    )
    return {"workTypes": work_types, "subjects": subjects}


# ── 作業種別ページ ──────────────────────────────


@app.get("/api/content/{locale}/{work_type}/metadata")
async def get_work_type_metadata(locale: str, work_type: str):
    """メタデータ: 取得できなければ空オブジェクト"""
    try:
        page = await content_client.get_work_type_page(work_type)
    except ContentNotFound:
        return {}
    return metadata.work_type_page_metadata(page, locale, work_type, BASE_URL)


@app.get("/api/content/{locale}/{work_type}")
async def get_work_type_page(locale: str, work_type: str):
    page = await _or_404(content_client.get_work_type_page(work_type))
    return {
        "title": metadata.localized(page, "title", locale),
        "page": page,
    }


@app.get("/health")
async def health():
    return {"status": "ok", "service": "content-service"}
