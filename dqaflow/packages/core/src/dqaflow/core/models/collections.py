"""CollectionSet -- 存储/同步协作方每次推送的全量集合

推送的是全量替换而不是增量，增量由引擎自行计算。
"""

from pydantic import BaseModel, Field

from .escalation import Escalation
from .inventory import InventoryFile
from .invoice import Invoice
from .task import Task
from .user import User


class CollectionSet(BaseModel):
    """一次推送的全量集合"""

    tasks: list[Task] = Field(default_factory=list)
    invoices: list[Invoice] = Field(default_factory=list)
    escalations: list[Escalation] = Field(default_factory=list)
    inventories: list[InventoryFile] = Field(
        default_factory=list,
        description="只读库存文件",
    )
    users: list[User] = Field(default_factory=list, description="只读人员名册")
