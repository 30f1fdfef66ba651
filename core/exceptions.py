"""
Progress Tree 异常定义模块。

定义系统中所有自定义异常的层次结构：
- ProgressTreeError: 基类，所有已知错误
- NotFoundError: 引用的 id 不存在
- UnauthorizedError: 鉴权（由 gateway 代理）失败
- ConcurrencyConflictError: 持久化状态在编辑期间已被修改
- InvariantViolationError: 操作会破坏树的不变量（环、悬挂父节点、孤立叶子）
"""
from typing import Optional


class ProgressTreeError(Exception):
    """Progress Tree 基础异常类。

    所有系统内已知错误都继承自此类。
    捕获此类可以处理所有预期的错误情况。
    """

    def __init__(self, message: str, hint: Optional[str] = None):
        """
        Args:
            message: 错误描述
            hint: 对用户的操作建议
        """
        super().__init__(message)
        self.message = message
        self.hint = hint

    def get_user_message(self) -> str:
        """返回用户友好的错误消息。"""
        if self.hint:
            return f"{self.message}\n💡 Hint: {self.hint}"
        return self.message


class ConfigError(ProgressTreeError):
    """配置文件错误。"""

    def __init__(self, message: str, config_path: Optional[str] = None):
        hint = f"Check config file: {config_path}" if config_path else "Check config file format"
        super().__init__(message, hint)
        self.config_path = config_path


class NotFoundError(ProgressTreeError):
    """The operation references an id that is absent from the store."""

    def __init__(self, entity_id: Optional[str], kind: str = "entity"):
        super().__init__(f"{kind} not found: {entity_id}")
        self.entity_id = entity_id
        self.kind = kind


class UnauthorizedError(ProgressTreeError):
    """鉴权失败（owner-or-admin 检查不通过，或缺少身份）。"""

    def __init__(self, message: str = "Not allowed to modify this goal", status_code: int = 403):
        super().__init__(message, hint="Only the owner or an admin may change it")
        self.status_code = status_code


class ConcurrencyConflictError(ProgressTreeError):
    """持久化状态在等待中的编辑下发生了变化。

    调用方应重新拉取 (reload) 后重试，系统绝不静默覆盖。
    """

    def __init__(self, message: str, entity_id: Optional[str] = None):
        super().__init__(message, hint="Reload the tree and retry the change")
        self.entity_id = entity_id


class InvariantViolationError(ProgressTreeError):
    """The change would create a cycle, a dangling parent or an orphaned leaf.

    This is a contract failure of the caller and is rejected before anything
    is mutated.
    """


class ValidationError(ProgressTreeError):
    """Malformed input: blank label, negative target days and the like."""


class GatewayError(ProgressTreeError):
    """Transport failure talking to the persistence collaborator."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, hint="Check that the progress server is reachable")
        self.status_code = status_code
