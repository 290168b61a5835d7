"""
合约读取器
只读调用：编码 -> eth_call -> 解码，不涉及 nonce / gas / 签名
"""

import logging
from typing import Any

from .contract_binding import ContractBinding

logger = logging.getLogger(__name__)


class ContractReader:
    """只读合约调用"""

    def __init__(self, connection: Any, binding: ContractBinding):
        """
        初始化合约读取器

        Args:
            connection: 节点连接（NodeConnection 或同接口对象）
            binding: 合约绑定
        """
        self.connection = connection
        self.binding = binding

    async def query(self, function_name: str, *args: Any) -> Any:
        """
        调用只读函数并解码返回值

        Args:
            function_name: 函数名
            *args: 函数参数

        Returns:
            解码后的返回值（单个值或 tuple）

        Raises:
            EncodingError / NetworkError / NodeRpcError / DecodingError
        """
        data = self.binding.encode_call(function_name, *args)
        result = await self.connection.call(self.binding.address, data)
        logger.debug("%s returned %d bytes", function_name, len(result))
        return self.binding.decode_result(function_name, result)

    def __repr__(self) -> str:
        return f"ContractReader(address={self.binding.address})"
