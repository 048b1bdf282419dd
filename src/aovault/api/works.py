"""作品 API：导入、阅读、更新检查."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from aovault.config import Settings, get_settings
from aovault.core import store
from aovault.core.archive import ArchiveDownloader
from aovault.core.importer import ImportKind, ImportService
from aovault.core.resolver import ContentResolver
from aovault.core.updater import UpdateChecker
from aovault.errors import (
    InvalidUrlError,
    ParseError,
    RateLimitedError,
    UnreachableError,
    WorkNotFoundError,
)
from aovault.extractors import AO3ChapterParser, AO3WorkParser, EpubExtractor
from aovault.fetcher import FetchOrchestrator, get_orchestrator
from aovault.models.database import get_session
from aovault.models.work import Work

router = APIRouter(prefix="/api/works", tags=["works"])


class ImportRequest(BaseModel):
    """导入请求；html 为客户端代抓的作品页."""

    url: str
    html: str | None = None


def _work_dict(work: Work) -> dict[str, Any]:
    return work.model_dump(mode="json")


@router.post("/import", status_code=201)
async def import_work(
    body: ImportRequest,
    session: AsyncSession = Depends(get_session),
    orchestrator: FetchOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
) -> Any:
    """导入一篇 AO3 作品."""
    service = ImportService(
        session,
        orchestrator,
        parser=AO3WorkParser(settings.ao3_base_url),
        downloader=ArchiveDownloader(
            orchestrator, settings.storage_dir, settings.ao3_base_url
        ),
        archive_extractor=EpubExtractor(),
        base_url=settings.ao3_base_url,
    )

    try:
        outcome = await service.import_work(
            settings.default_owner_id, body.url, body.html
        )
    except (InvalidUrlError, ParseError) as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    if outcome.kind == ImportKind.DUPLICATE:
        return JSONResponse(
            status_code=409,
            content={
                "error": "作品已在收藏中",
                "alreadySaved": True,
                "workId": outcome.work_id,
                "title": outcome.title,
            },
        )

    if outcome.kind == ImportKind.NEEDS_CLIENT_FETCH:
        return JSONResponse(
            status_code=422,
            content={
                "error": "服务端无法访问 AO3，请由客户端抓取页面后重新提交",
                "needsClientFetch": True,
                "retryAfter": outcome.retry_after,
            },
        )

    return {
        "message": f"已导入: {outcome.title}",
        "work": _work_dict(outcome.work) if outcome.work else None,
        "chaptersCached": outcome.chapters_cached,
    }


@router.post("/check-updates")
async def check_updates(
    limit: int = Query(10, ge=1, le=100, description="本次检查的作品数"),
    session: AsyncSession = Depends(get_session),
    orchestrator: FetchOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """检查 WIP 作品更新."""
    checker = UpdateChecker(
        session,
        orchestrator,
        parser=AO3WorkParser(settings.ao3_base_url),
        downloader=ArchiveDownloader(
            orchestrator, settings.storage_dir, settings.ao3_base_url
        ),
        failure_threshold=settings.recheck_failure_threshold,
        base_url=settings.ao3_base_url,
    )
    results = await checker.check_for_updates(settings.default_owner_id, limit)
    return {"results": [r.to_dict() for r in results]}


@router.get("/{work_id}")
async def get_work(
    work_id: int,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """获取作品元数据."""
    work = await store.get_work(session, work_id)
    if work is None:
        raise HTTPException(status_code=404, detail="作品不存在")
    return _work_dict(work)


@router.get("/{work_id}/content")
async def get_work_content(
    work_id: int,
    session: AsyncSession = Depends(get_session),
    orchestrator: FetchOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
) -> Any:
    """获取作品正文（缓存 -> EPUB -> 源站）."""
    resolver = ContentResolver(
        session,
        orchestrator,
        archive_extractor=EpubExtractor(),
        chapter_parser=AO3ChapterParser(),
        base_url=settings.ao3_base_url,
    )

    try:
        content = await resolver.resolve(work_id)
    except WorkNotFoundError as e:
        raise HTTPException(status_code=404, detail="作品不存在") from e
    except RateLimitedError as e:
        return JSONResponse(
            status_code=429,
            headers={"Retry-After": str(int(e.retry_after))},
            content={
                "error": str(e),
                "rateLimited": True,
                "retryAfter": e.retry_after,
            },
        )
    except UnreachableError as e:
        return JSONResponse(
            status_code=502,
            content={"error": str(e), "unreachable": True},
        )

    return content.to_dict()
