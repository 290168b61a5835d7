"""
交易流水线
一次状态修改调用的完整流程：
编码 -> 读取 nonce -> 读取 gas price -> 组装交易 -> 估算 gas -> 签名 -> 广播 -> 等待回执

每一步都依赖上一步的结果，严格顺序执行；任何一步失败都会带着步骤标记抛出，
不做重试。重试需要调用方重新调用 submit（从第 1 步开始，重新读取 nonce）。

注意：同一地址的两个并发 submit 可能读到相同的 nonce，后广播的一笔会被节点拒绝。
需要原子性时用 serialize=True，或由调用方在外部串行化。
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import IntEnum
from typing import Any, AsyncIterator, Optional

from .contract_binding import ContractBinding
from .errors import ChainError, SubmissionError
from .models import PendingTransaction, Receipt, TransactionRequest
from .signer import Signer

logger = logging.getLogger(__name__)

# 估算前的保守占位 gas limit
DEFAULT_GAS_LIMIT = 3_000_000


class PipelineStep(IntEnum):
    """流水线步骤"""
    ENCODE = 1
    NONCE = 2
    GAS_PRICE = 3
    ASSEMBLE = 4
    ESTIMATE = 5
    SIGN = 6
    BROADCAST = 7


class TransactionPipeline:
    """状态修改调用的交易流水线"""

    def __init__(
        self,
        connection: Any,
        binding: ContractBinding,
        signer: Signer,
        chain_id: Optional[int] = None,
        gas_limit: int = DEFAULT_GAS_LIMIT,
        serialize: bool = False
    ):
        """
        初始化交易流水线

        Args:
            connection: 节点连接（NodeConnection 或同接口对象）
            binding: 合约绑定
            signer: 签名器
            chain_id: 链 ID（不提供则首次使用时从节点读取）
            gas_limit: 估算前的占位 gas limit
            serialize: 是否串行化同一流水线上的提交（避免 nonce 竞争）
        """
        self.connection = connection
        self.binding = binding
        self.signer = signer
        self.chain_id = chain_id
        self.gas_limit = gas_limit
        self.serialize = serialize
        self._lock = asyncio.Lock() if serialize else None

    @asynccontextmanager
    async def _sequenced(self) -> AsyncIterator[None]:
        if self._lock is None:
            yield
            return
        async with self._lock:
            yield

    async def _chain_id(self) -> int:
        # 链 ID 不会变化，读一次即可
        if self.chain_id is None:
            self.chain_id = await self.connection.get_chain_id()
        return self.chain_id

    async def _step(self, step: PipelineStep, awaitable: Any) -> Any:
        try:
            return await awaitable
        except ChainError as e:
            raise e.at(step)

    async def send(self, function_name: str, *args: Any) -> PendingTransaction:
        """
        执行第 1~7 步，直到节点把交易接受进交易池

        Args:
            function_name: 合约函数名
            *args: 函数参数

        Returns:
            PendingTransaction（尚未确认上链）
        """
        # 1. 编码，失败时不浪费任何网络请求
        try:
            data = self.binding.encode_call(function_name, *args)
        except ChainError as e:
            raise e.at(PipelineStep.ENCODE)

        sender = self.signer.address

        # 2. nonce 和 3. gas price 每次都现取
        nonce = await self._step(
            PipelineStep.NONCE, self.connection.get_transaction_count(sender)
        )
        gas_price = await self._step(
            PipelineStep.GAS_PRICE, self.connection.get_gas_price()
        )

        # 4. 组装占位交易
        chain_id = await self._step(PipelineStep.ASSEMBLE, self._chain_id())
        request = TransactionRequest(
            from_address=sender,
            to=self.binding.address,
            gas=self.gas_limit,
            gas_price=gas_price,
            nonce=nonce,
            data=data,
            chain_id=chain_id,
        )

        # 5. 估算失败直接中止，不签名也不广播
        estimated = await self._step(
            PipelineStep.ESTIMATE, self.connection.estimate_gas(request)
        )
        request = request.with_gas(estimated)

        # 6. 签名
        try:
            signed = self.signer.sign(request)
        except ChainError as e:
            raise e.at(PipelineStep.SIGN)

        # 7. 广播（节点接受进交易池）
        tx_hash = await self._step(
            PipelineStep.BROADCAST, self.connection.send_raw_transaction(signed.raw_payload)
        )
        if tx_hash != signed.hash:
            logger.warning("Node reported hash %s for signed transaction %s", tx_hash, signed.hash)

        logger.info(
            "Transaction %s accepted by node: %s nonce=%s gas=%s gasPrice=%s",
            tx_hash, function_name, nonce, estimated, gas_price
        )
        return PendingTransaction(transaction_hash=tx_hash, request=request, signed=signed)

    async def wait(self, pending: PendingTransaction) -> Receipt:
        """
        等待已广播的交易上链

        Raises:
            SubmissionError: 等待超时，或交易上链但执行失败（status=0）
        """
        receipt = await self._step(
            PipelineStep.BROADCAST,
            self.connection.wait_for_receipt(pending.transaction_hash),
        )
        if not receipt.succeeded:
            raise SubmissionError(
                f"Transaction {pending.transaction_hash} was mined but reverted",
                tx_hash=pending.transaction_hash,
                receipt=receipt,
                step=PipelineStep.BROADCAST,
            )

        logger.info(
            "Transaction %s mined in block %s (gasUsed=%s)",
            receipt.transaction_hash, receipt.block_number, receipt.gas_used
        )
        return receipt

    async def submit(self, function_name: str, *args: Any) -> Receipt:
        """
        提交状态修改调用并等待回执

        Args:
            function_name: 合约函数名
            *args: 函数参数

        Returns:
            Receipt

        Raises:
            ChainError: 任意一步失败，error.step 标记失败的步骤
        """
        async with self._sequenced():
            try:
                pending = await self.send(function_name, *args)
                return await self.wait(pending)
            except ChainError as e:
                logger.warning("%s failed at step %s: %s", function_name, getattr(e.step, "name", e.step), e.message)
                raise

    def __repr__(self) -> str:
        return f"TransactionPipeline(contract={self.binding.address}, sender={self.signer.address})"
