"""
rbac_core/context.py

操作上下文 - 为批量同步循环提供截止时间和取消信号
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from rbac_core.errors import ErrorKind, PermissionSyncError


@dataclass
class OperationContext:
    """
    操作上下文

    Attributes:
        deadline: 截止时间（time.monotonic() 时钟），None 表示不限时
        cancel_event: 外部取消信号
    """

    deadline: Optional[float] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def with_timeout(cls, seconds: float) -> "OperationContext":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        if self.cancel_event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        """在批量循环的每次迭代之间调用，已取消或超时则抛出 CANCELLED"""
        if self.cancelled:
            reason = "cancelled" if self.cancel_event.is_set() else "deadline exceeded"
            raise PermissionSyncError(ErrorKind.CANCELLED, f"操作已中止: {reason}")


# 不限时、不可取消的默认上下文
def background() -> OperationContext:
    return OperationContext()


__all__ = ["OperationContext", "background"]
