"""User / Viewer 模型

User 是只读的人员名册（由认证协作方维护）；
Viewer 是当前会话的操作者，通知受众和部分守卫依赖它。
"""

from pydantic import BaseModel, Field

from .enums import UserRole


class User(BaseModel):
    """名册中的用户"""

    user_id: str = Field(description="用户 ID")
    name: str = Field(default="", description="显示名称")
    role: UserRole = Field(description="角色")


class Viewer(BaseModel):
    """当前活跃的操作者"""

    user_id: str = Field(description="操作者 ID")
    role: UserRole = Field(description="操作者角色")
    name: str = Field(default="", description="显示名称")

    @property
    def is_manager(self) -> bool:
        return self.role == UserRole.MANAGER
