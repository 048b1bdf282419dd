"""持久化操作：作品查重、章节缓存、更新检查记录."""

import json
import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from aovault.extractors.base import ExtractedChapter
from aovault.models.chapter import Chapter
from aovault.models.check import UpdateCheck
from aovault.models.work import Work, WorkStatus
from aovault.utils.clock import utc_now

logger = logging.getLogger(__name__)


async def find_work(
    session: AsyncSession, owner_id: int, source: str, source_id: str
) -> Work | None:
    """按 (用户, 来源, 源站 ID) 查找作品."""
    stmt = select(Work).where(
        Work.owner_id == owner_id,
        Work.source == source,
        Work.source_id == source_id,
    )
    result = await session.execute(stmt)
    return result.scalars().first()


async def get_work(session: AsyncSession, work_id: int) -> Work | None:
    """按主键获取作品."""
    return await session.get(Work, work_id)


async def insert_work(session: AsyncSession, work: Work) -> Work:
    """插入作品；唯一约束冲突由调用方处理."""
    session.add(work)
    await session.commit()
    await session.refresh(work)
    return work


async def list_chapters(session: AsyncSession, work_id: int) -> list[ExtractedChapter]:
    """按序号读取已缓存的章节."""
    stmt = select(Chapter).where(Chapter.work_id == work_id).order_by(Chapter.number)
    result = await session.execute(stmt)
    return [
        ExtractedChapter(number=c.number, title=c.title, html=c.html)
        for c in result.scalars().all()
    ]


async def save_chapters(
    session: AsyncSession, work_id: int, chapters: Sequence[ExtractedChapter]
) -> int:
    """
    幂等写入章节缓存，返回新插入的行数.

    使用 INSERT ... ON CONFLICT DO NOTHING，由数据库在 (work_id, number)
    上去重；并发写同一章时保留最先写入的内容。
    """
    if not chapters:
        return 0

    now = utc_now()
    rows: list[dict[str, Any]] = [
        {
            "work_id": work_id,
            "number": chapter.number,
            "title": chapter.title,
            "html": chapter.html,
            "cached_at": now,
        }
        for chapter in chapters
    ]

    dialect = session.get_bind().dialect.name
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    stmt = (
        insert(Chapter.__table__)  # type: ignore[attr-defined]
        .values(rows)
        .on_conflict_do_nothing(index_elements=["work_id", "number"])
    )
    result = await session.execute(stmt)
    await session.commit()

    inserted = max(result.rowcount or 0, 0)
    logger.info(f"章节缓存写入: work={work_id}, 新增 {inserted}/{len(rows)}")
    return inserted


async def delete_chapters(session: AsyncSession, work_id: int) -> int:
    """清空作品的章节缓存."""
    result = await session.execute(delete(Chapter).where(Chapter.work_id == work_id))
    await session.commit()
    return result.rowcount or 0


async def list_wips_for_recheck(
    session: AsyncSession, owner_id: int, limit: int
) -> list[Work]:
    """未完结作品，按最近检查时间升序（从未检查的优先）."""
    stmt = (
        select(Work)
        .where(Work.owner_id == owner_id, Work.status == WorkStatus.WIP)
        .order_by(
            Work.last_checked_at.asc().nulls_first(),  # type: ignore[union-attr]
            Work.id,
        )
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def record_check(
    session: AsyncSession,
    work_id: int,
    status: str,
    details: dict[str, Any] | None = None,
) -> UpdateCheck:
    """记录一次更新检查结果."""
    check = UpdateCheck(
        work_id=work_id,
        status=status,
        details=json.dumps(details, ensure_ascii=False, default=str) if details else None,
    )
    session.add(check)
    await session.commit()
    return check
