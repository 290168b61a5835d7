"""
节点连接
封装单个 AsyncWeb3 客户端，提供 nonce / gas price / gas 估算 / 广播 / 只读调用等原语，
并把底层异常归类为 NetworkError / NodeRpcError / EstimationError / SubmissionError。
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Type

import aiohttp
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from .errors import ChainError, EstimationError, NetworkError, NodeRpcError, SubmissionError
from .models import Receipt, TransactionRequest

logger = logging.getLogger(__name__)

# eth_estimateGas 被拒绝时表示“执行会失败”的错误码和信息
_EXECUTION_FAILURE_CODES = (3, -32015)
_EXECUTION_FAILURE_MARKERS = (
    "execution reverted",
    "gas required exceeds",
    "always failing transaction",
    "out of gas",
)


def _rpc_error(method: str, error: Exception) -> NodeRpcError:
    """把节点返回的错误转成 NodeRpcError（尽量保留 code / message）"""
    payload = error.args[0] if error.args else None
    if isinstance(payload, dict):
        return NodeRpcError(
            f"{method} rejected: {payload.get('message', payload)}",
            code=payload.get("code"),
            data=payload.get("data"),
        )
    rpc_response = getattr(error, "rpc_response", None) or {}
    detail = rpc_response.get("error") if isinstance(rpc_response, dict) else None
    if isinstance(detail, dict):
        return NodeRpcError(
            f"{method} rejected: {detail.get('message', error)}",
            code=detail.get("code"),
            data=detail.get("data"),
        )
    return NodeRpcError(f"{method} rejected: {error}")


class NodeConnection:
    """到区块链节点的持久连接（进程内共享，显式关闭）"""

    def __init__(
        self,
        rpc_url: str,
        request_timeout: float = 30,
        receipt_timeout: float = 120,
        receipt_poll_interval: float = 2.0
    ):
        """
        初始化节点连接

        Args:
            rpc_url: 节点 JSON-RPC 地址
            request_timeout: 单次 HTTP 请求超时（秒）
            receipt_timeout: 等待交易上链的最长时间（秒）
            receipt_poll_interval: 轮询回执的间隔（秒）
        """
        if not rpc_url:
            raise ValueError("RPC URL is not provided")

        self.rpc_url = rpc_url
        self.receipt_timeout = receipt_timeout
        self.receipt_poll_interval = receipt_poll_interval

        self.w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )

    @asynccontextmanager
    async def _rpc(
        self,
        method: str,
        revert_error: Type[ChainError] = NodeRpcError
    ) -> AsyncIterator[None]:
        """
        统一的异常归类

        Args:
            method: RPC 方法名（用于错误信息）
            revert_error: 节点报告执行会 revert 时抛出的错误类型
        """
        try:
            yield
        except ChainError:
            raise
        except ContractLogicError as e:
            raise revert_error(f"{method} reverted: {e}") from e
        except TimeExhausted as e:
            raise SubmissionError(f"{method} timed out: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise NetworkError(f"{method} failed, node unreachable at {self.rpc_url}: {e}") from e
        except (Web3Exception, ValueError) as e:
            raise _rpc_error(method, e) from e

    # ============ 账户 / 费用 ============

    async def get_transaction_count(self, address: str) -> int:
        """
        获取地址的 nonce（包含 pending 交易）

        Args:
            address: 钱包地址

        Returns:
            下一笔交易应使用的 nonce
        """
        checksum_address = Web3.to_checksum_address(address)
        async with self._rpc("eth_getTransactionCount"):
            return await self.w3.eth.get_transaction_count(checksum_address, "pending")

    async def get_gas_price(self) -> int:
        """获取节点建议的 gas price（不缓存）"""
        async with self._rpc("eth_gasPrice"):
            return await self.w3.eth.gas_price

    async def estimate_gas(self, request: TransactionRequest) -> int:
        """
        模拟执行交易并估算 gas

        Raises:
            EstimationError: 调用会 revert（合约前置条件不满足）
        """
        try:
            async with self._rpc("eth_estimateGas", revert_error=EstimationError):
                return await self.w3.eth.estimate_gas(request.to_call_dict())
        except NodeRpcError as e:
            # 部分节点用普通 JSON-RPC 错误（如 -32000 gas required exceeds allowance）报告 revert
            message = e.message.lower()
            if e.code in _EXECUTION_FAILURE_CODES or any(m in message for m in _EXECUTION_FAILURE_MARKERS):
                raise EstimationError(e.message) from e
            raise

    # ============ 广播 ============

    async def send_raw_transaction(self, raw_payload: bytes) -> str:
        """
        广播签名交易，节点接受进交易池即返回

        Returns:
            交易哈希（0x hex）
        """
        async with self._rpc("eth_sendRawTransaction"):
            tx_hash = await self.w3.eth.send_raw_transaction(raw_payload)
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: Optional[float] = None,
        poll_latency: Optional[float] = None
    ) -> Receipt:
        """
        等待交易上链

        Raises:
            SubmissionError: 超时或节点查询失败（交易结果不确定）
        """
        timeout = self.receipt_timeout if timeout is None else timeout
        poll_latency = self.receipt_poll_interval if poll_latency is None else poll_latency
        try:
            async with self._rpc("eth_getTransactionReceipt"):
                receipt = await self.w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=timeout, poll_latency=poll_latency
                )
        except SubmissionError as e:
            e.tx_hash = tx_hash
            raise
        except (NetworkError, NodeRpcError) as e:
            raise SubmissionError(
                f"Transaction {tx_hash} was accepted but its receipt could not be fetched: {e.message}",
                tx_hash=tx_hash,
            ) from e
        return Receipt.from_web3(receipt)

    async def send_signed_transaction(self, raw_payload: bytes) -> Receipt:
        """广播并等待上链（节点接受 + 打包确认）"""
        tx_hash = await self.send_raw_transaction(raw_payload)
        return await self.wait_for_receipt(tx_hash)

    # ============ 只读 ============

    async def call(self, to: str, data: bytes) -> bytes:
        """
        只读调用（eth_call，基于 latest 状态）

        Returns:
            原始返回数据
        """
        params = {"to": Web3.to_checksum_address(to), "data": Web3.to_hex(data)}
        async with self._rpc("eth_call"):
            result = await self.w3.eth.call(params, "latest")
        return bytes(result)

    async def get_chain_id(self) -> int:
        async with self._rpc("eth_chainId"):
            return await self.w3.eth.chain_id

    async def get_block_number(self) -> int:
        async with self._rpc("eth_blockNumber"):
            return await self.w3.eth.block_number

    async def get_logs(self, filter_params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """按过滤条件获取日志"""
        async with self._rpc("eth_getLogs"):
            logs = await self.w3.eth.get_logs(dict(filter_params))
        return [dict(log) for log in logs]

    async def is_connected(self) -> bool:
        """检查节点是否可达"""
        try:
            return await self.w3.is_connected()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, Web3Exception):
            return False

    async def close(self) -> None:
        """关闭底层 HTTP 会话"""
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
        logger.debug("Node connection to %s closed", self.rpc_url)

    def __repr__(self) -> str:
        return f"NodeConnection(rpc_url={self.rpc_url})"
