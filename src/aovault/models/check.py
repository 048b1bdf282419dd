"""UpdateCheck 更新检查记录模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from aovault.utils.clock import utc_now


class UpdateCheck(SQLModel, table=True):
    """WIP 更新检查历史."""

    __tablename__ = "update_checks"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    work_id: int = Field(foreign_key="works.id", index=True, description="关联作品")
    status: str = Field(description="结果: updated|unchanged|failed|skipped")
    details: str | None = Field(default=None, description="变更或错误详情 (JSON)")
    checked_at: datetime = Field(default_factory=utc_now)
