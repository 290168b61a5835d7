"""
链上交互错误类型

每一类错误对应一个独立的失败点，调用方据此区分
“请求本身有问题”与“网络/节点出了问题”。
"""

from typing import Any, Optional


class ChainError(Exception):
    """链上交互错误基类"""

    def __init__(self, message: str, step: Optional[Any] = None):
        self.message = message
        self.step = step
        super().__init__(message)

    def at(self, step: Any) -> "ChainError":
        """标记失败发生在哪一个流水线步骤（已标记的不覆盖）"""
        if self.step is None:
            self.step = step
        return self

    def __str__(self) -> str:
        if self.step is None:
            return self.message
        name = getattr(self.step, "name", self.step)
        return f"[{name}] {self.message}"


class EncodingError(ChainError):
    """参数与 ABI 描述不匹配"""
    pass


class DecodingError(ChainError):
    """返回数据与 ABI 输出类型不匹配"""
    pass


class NetworkError(ChainError):
    """网络不可达或请求超时"""
    pass


class NodeRpcError(ChainError):
    """节点明确拒绝了请求"""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Any = None,
        step: Optional[Any] = None
    ):
        self.code = code
        self.data = data
        super().__init__(message, step=step)


class EstimationError(ChainError):
    """Gas 估算时模拟执行会 revert"""
    pass


class SubmissionError(ChainError):
    """交易已被节点接受，但等待上链失败（结果不确定）"""

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        receipt: Any = None,
        step: Optional[Any] = None
    ):
        self.tx_hash = tx_hash
        self.receipt = receipt
        super().__init__(message, step=step)


class InvalidKeyError(ChainError):
    """私钥格式错误"""
    pass
