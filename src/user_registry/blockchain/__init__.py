"""
区块链交互模块

包含:
- NodeConnection: 节点 JSON-RPC 连接 (AsyncWeb3)
- ContractBinding: 合约 ABI 编码 / 解码
- Signer: 交易签名
- TransactionPipeline: 状态修改交易流水线
- ContractReader: 只读调用
- EventListener: 合约事件监听
- UserRegistry: UserRegistry 合约交互
"""

from .errors import (
    ChainError,
    EncodingError,
    DecodingError,
    NetworkError,
    NodeRpcError,
    EstimationError,
    SubmissionError,
    InvalidKeyError,
)
from .models import (
    TransactionRequest,
    SignedTransaction,
    PendingTransaction,
    Receipt,
    EventRecord,
    UserRecord,
)
from .node_connection import NodeConnection
from .contract_binding import ContractBinding
from .signer import Signer
from .pipeline import TransactionPipeline, PipelineStep
from .contract_reader import ContractReader
from .event_listener import EventListener, EventSubscription
from .user_registry import UserRegistry, USER_REGISTRY_ABI

__all__ = [
    # 错误类型
    "ChainError",
    "EncodingError",
    "DecodingError",
    "NetworkError",
    "NodeRpcError",
    "EstimationError",
    "SubmissionError",
    "InvalidKeyError",
    # 数据模型
    "TransactionRequest",
    "SignedTransaction",
    "PendingTransaction",
    "Receipt",
    "EventRecord",
    "UserRecord",
    # 组件
    "NodeConnection",
    "ContractBinding",
    "Signer",
    "TransactionPipeline",
    "PipelineStep",
    "ContractReader",
    "EventListener",
    "EventSubscription",
    "UserRegistry",
    "USER_REGISTRY_ABI",
]
