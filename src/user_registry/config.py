"""
配置加载
从 .env / 环境变量读取节点地址、合约地址和私钥
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """进程配置（启动时加载一次）"""
    rpc_url: str
    contract_address: str
    private_key: str
    chain_id: Optional[int] = None
    gas_limit: int = 3_000_000
    receipt_timeout: float = 120
    receipt_poll_interval: float = 2.0
    event_poll_interval: float = 2.0
    request_timeout: float = 30
    serialize_submissions: bool = False

    def __repr__(self) -> str:
        # 私钥不出现在 repr 中
        return (
            f"Settings(rpc_url={self.rpc_url}, contract_address={self.contract_address}, "
            f"chain_id={self.chain_id})"
        )


def _require(name: str, *aliases: str) -> str:
    for key in (name, *aliases):
        value = os.getenv(key)
        if value:
            return value.strip()
    raise ValueError(f"{name} not found in .env")


def _number(name: str, default, cast=float):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return cast(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


def _flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    """
    加载配置

    Returns:
        Settings

    Raises:
        ValueError: 缺少必填项或数值格式错误
    """
    load_dotenv()

    return Settings(
        rpc_url=_require("INFURA_URL", "RPC_URL"),
        contract_address=_require("CONTRACT_ADDRESS"),
        private_key=_require("PRIVATE_KEY"),
        chain_id=_number("CHAIN_ID", None, int),
        gas_limit=_number("GAS_LIMIT", 3_000_000, int),
        receipt_timeout=_number("RECEIPT_TIMEOUT", 120),
        receipt_poll_interval=_number("RECEIPT_POLL_INTERVAL", 2.0),
        event_poll_interval=_number("EVENT_POLL_INTERVAL", 2.0),
        request_timeout=_number("REQUEST_TIMEOUT", 30),
        serialize_submissions=_flag("SERIALIZE_SUBMISSIONS"),
    )
