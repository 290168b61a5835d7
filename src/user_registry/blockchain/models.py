"""
链上交互数据模型
交易请求、签名交易、回执、事件记录、用户记录
"""

from dataclasses import dataclass, field, asdict, replace
from typing import Any, Dict, Mapping, Optional

from web3 import Web3


def _hex(value: Any) -> Optional[str]:
    """bytes / HexBytes 统一转成 0x 开头的 hex 字符串"""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return str(value)


@dataclass(frozen=True)
class TransactionRequest:
    """待签名的交易请求（每次调用重新构建，不复用）"""
    from_address: str
    to: str
    gas: int
    gas_price: int
    nonce: int
    data: bytes
    chain_id: int
    value: int = 0

    def with_gas(self, gas: int) -> "TransactionRequest":
        """用估算结果替换占位 gas limit"""
        return replace(self, gas=gas)

    def to_call_dict(self) -> Dict[str, Any]:
        """eth_estimateGas 使用的参数"""
        return {
            "from": self.from_address,
            "to": self.to,
            "gas": self.gas,
            "gasPrice": self.gas_price,
            "nonce": self.nonce,
            "value": self.value,
            "data": Web3.to_hex(self.data),
        }

    def to_sign_dict(self) -> Dict[str, Any]:
        """eth_account 签名使用的字段（legacy 交易）"""
        return {
            "to": self.to,
            "gas": self.gas,
            "gasPrice": self.gas_price,
            "nonce": self.nonce,
            "value": self.value,
            "data": self.data,
            "chainId": self.chain_id,
        }


@dataclass(frozen=True)
class SignedTransaction:
    """签名后的交易，只能广播一次"""
    raw_payload: bytes
    hash: str


@dataclass(frozen=True)
class Receipt:
    """交易回执（交易上链后由节点返回）"""
    transaction_hash: str
    status: int
    block_number: Optional[int] = None
    block_hash: Optional[str] = None
    gas_used: Optional[int] = None
    from_address: Optional[str] = None
    to: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_web3(cls, receipt: Mapping[str, Any]) -> "Receipt":
        """从 web3 返回的回执构建"""
        status = receipt.get("status", 0)
        if isinstance(status, str):
            status = int(status, 16)
        return cls(
            transaction_hash=_hex(receipt.get("transactionHash")),
            status=int(status),
            block_number=receipt.get("blockNumber"),
            block_hash=_hex(receipt.get("blockHash")),
            gas_used=receipt.get("gasUsed"),
            from_address=receipt.get("from"),
            to=receipt.get("to"),
            raw=dict(receipt),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactionHash": self.transaction_hash,
            "status": self.status,
            "blockNumber": self.block_number,
            "blockHash": self.block_hash,
            "gasUsed": self.gas_used,
            "from": self.from_address,
            "to": self.to,
        }


@dataclass(frozen=True)
class PendingTransaction:
    """已被节点交易池接受、尚未确认上链的交易"""
    transaction_hash: str
    request: TransactionRequest
    signed: SignedTransaction = field(repr=False)


@dataclass(frozen=True)
class EventRecord:
    """解码后的合约事件"""
    name: str
    args: Dict[str, Any]
    block_number: Optional[int] = None
    transaction_hash: Optional[str] = None
    log_index: Optional[int] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class UserRecord:
    """链上用户记录"""
    name: str
    age: int
    email: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def exists(self) -> bool:
        """合约对不存在的用户返回零值记录"""
        return bool(self.name)
