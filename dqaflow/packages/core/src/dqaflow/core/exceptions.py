"""引擎异常体系

- ValidationError: 生命周期流转被拒绝，调用方不得产生任何修改
- NotFoundError: 类型化引用查找失败；级联删除场景下视为 no-op
- SyncWriteError: 向存储/同步协作方写入失败，非致命，只记录日志
"""


class EngineError(Exception):
    """引擎基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可在后续周期自行恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class ValidationError(EngineError):
    """非法的生命周期流转

    例如：仅有一条消息时关闭 Escalation，或存在未关闭 Escalation 时手动完成任务。
    """

    def __init__(self, message: str, entity_id: str = "") -> None:
        super().__init__(message, recoverable=False)
        self.entity_id = entity_id


class NotFoundError(EngineError):
    """引用的实体在当前快照中不存在"""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} 不存在: {entity_id}", recoverable=True)
        self.kind = kind
        self.entity_id = entity_id


class SyncWriteError(EngineError):
    """同步指令写入失败

    本地状态可能与后端暂时不一致，由下一次快照对齐；本引擎不重试。
    """

    def __init__(self, op: str, entity_id: str, original_error: Exception) -> None:
        super().__init__(
            f"同步写入失败: {op} {entity_id} -- {original_error}",
            recoverable=True,
        )
        self.op = op
        self.entity_id = entity_id
        self.original_error = original_error
