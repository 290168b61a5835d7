"""
测试公共组件：内存中的模拟节点和记录签名的签名器
"""

import asyncio
from collections import Counter

import pytest
from eth_utils import keccak
from web3 import Web3

from user_registry.blockchain import ContractBinding, Signer, USER_REGISTRY_ABI
from user_registry.blockchain.errors import NodeRpcError
from user_registry.blockchain.models import Receipt

# web3.js 文档中的示例私钥（仅用于测试）
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"
CONTRACT_ADDRESS = "0x1234567890abcdef1234567890abcdef12345678"


class FakeNode:
    """
    模拟节点

    - get_transaction_count 返回 base nonce + 已广播交易数
    - send_raw_transaction 对重复 nonce 报错（需要 nonce_of 记录 payload 对应的 nonce）
    - 每个方法都会让出一次事件循环，方便模拟并发交错
    """

    def __init__(self, nonce=0, gas_price=100, estimate=21000, chain_id=1337, tx_hash=None):
        self.nonce = nonce
        self.gas_price = gas_price
        self.estimate = estimate
        self.chain_id = chain_id
        self.tx_hash = tx_hash
        self.block_number = 100
        self.receipt_status = 1

        self.calls = Counter()
        self.errors = {}
        self.estimate_requests = []
        self.sent = []
        self.used_nonces = set()
        self.nonce_of = {}

        self.call_result = b""
        self.call_results = {}
        self.last_call = None

        self.logs = []
        self.log_errors = []
        self.closed = False

    async def _enter(self, name):
        self.calls[name] += 1
        await asyncio.sleep(0)
        error = self.errors.get(name)
        if error is not None:
            raise error

    async def get_transaction_count(self, address):
        await self._enter("get_transaction_count")
        return self.nonce + len(self.used_nonces)

    async def get_gas_price(self):
        await self._enter("get_gas_price")
        return self.gas_price

    async def get_chain_id(self):
        await self._enter("get_chain_id")
        return self.chain_id

    async def estimate_gas(self, request):
        await self._enter("estimate_gas")
        self.estimate_requests.append(request)
        return self.estimate

    async def send_raw_transaction(self, raw_payload):
        await self._enter("send_raw_transaction")
        nonce = self.nonce_of.get(raw_payload)
        if nonce is not None:
            if nonce in self.used_nonces:
                raise NodeRpcError("eth_sendRawTransaction rejected: nonce too low", code=-32000)
            self.used_nonces.add(nonce)
        self.sent.append(raw_payload)
        return self.tx_hash or Web3.to_hex(keccak(raw_payload))

    async def wait_for_receipt(self, tx_hash, timeout=None, poll_latency=None):
        await self._enter("wait_for_receipt")
        return Receipt(
            transaction_hash=tx_hash,
            status=self.receipt_status,
            block_number=self.block_number,
            gas_used=self.estimate,
        )

    async def call(self, to, data):
        await self._enter("call")
        self.last_call = (to, data)
        return self.call_results.get(bytes(data[:4]), self.call_result)

    async def get_block_number(self):
        await self._enter("get_block_number")
        return self.block_number

    async def get_logs(self, filter_params):
        await self._enter("get_logs")
        if self.log_errors:
            raise self.log_errors.pop(0)
        return [
            log for log in self.logs
            if filter_params["fromBlock"] <= log["blockNumber"] <= filter_params["toBlock"]
        ]

    async def is_connected(self):
        return True

    async def close(self):
        self.closed = True


class SpySigner(Signer):
    """记录签名请求，并告诉模拟节点每个 payload 的 nonce"""

    def __init__(self, private_key, node=None):
        super().__init__(private_key)
        self.node = node
        self.requests = []

    def sign(self, request):
        signed = super().sign(request)
        self.requests.append(request)
        if self.node is not None:
            self.node.nonce_of[signed.raw_payload] = request.nonce
        return signed


@pytest.fixture
def node():
    return FakeNode()


@pytest.fixture
def binding():
    return ContractBinding(CONTRACT_ADDRESS, USER_REGISTRY_ABI)


@pytest.fixture
def signer(node):
    return SpySigner(TEST_PRIVATE_KEY, node)
