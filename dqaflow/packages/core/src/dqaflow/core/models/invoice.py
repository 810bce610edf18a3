"""Invoice Domain Model

每张 Invoice 至多拥有两个派生 Task：
- companion 处理任务（task-{invoice_id}，创建时级联生成）
- manager-review 任务（task-mgr-{invoice_id}，仅在 COMPLETED 边沿生成）
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from .enums import InvoiceStatus


class InvoiceFileMeta(BaseModel):
    """发票相关文件元数据（内容由附件存储协作方持有）"""

    name: str = Field(description="文件名")
    size: str = Field(default="", description="可读的文件大小")
    type: Literal["pdf", "csv"] = Field(description="文件类型")


class Invoice(BaseModel):
    """Invoice 数据模型"""

    invoice_id: str = Field(description="唯一标识")
    reference_name: str = Field(description="引用名称，例如 'Studio A - Jan Invoice'")
    status: InvoiceStatus = Field(default=InvoiceStatus.PENDING, description="当前状态")
    assignee_id: str | None = Field(default=None, description="处理人 ID")
    assignee_name: str | None = Field(default=None, description="处理人名称")
    start_date: datetime | None = Field(default=None, description="开始时间")
    due_date: datetime | None = Field(default=None, description="截止时间")
    pdf_file: InvoiceFileMeta | None = Field(default=None, description="原始 PDF")
    csv_file: InvoiceFileMeta | None = Field(default=None, description="预处理 CSV")
    final_csv_file: InvoiceFileMeta | None = Field(
        default=None,
        description="处理人提交的最终交付物",
    )
    created_at: datetime = Field(description="创建时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")
