"""Inventory Domain Model

库存数据由导入协作方拥有，本引擎只读，用于自动完成规则。
"""

from pydantic import BaseModel, ConfigDict, Field

from .enums import InventoryStatus


class InventoryItem(BaseModel):
    """库存条目

    导入的 CSV 列各不相同，额外字段原样保留。
    """

    model_config = ConfigDict(extra="allow")

    item_id: str = Field(description="条目 ID")
    status: InventoryStatus = Field(default=InventoryStatus.PENDING, description="工作流状态")
    assignee_id: str | None = Field(default=None, description="负责人 ID")


class InventoryFile(BaseModel):
    """一次上传的库存文件"""

    file_id: str = Field(description="文件 ID")
    file_name: str = Field(default="", description="文件名")
    data: list[InventoryItem] = Field(default_factory=list, description="条目列表")
