"""
签名身份
持有唯一的私钥，派生发送方地址并对交易签名（不访问网络）
"""

from typing import Union

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_keys.exceptions import ValidationError as KeyValidationError
from web3 import Web3

from .errors import EncodingError, InvalidKeyError
from .models import SignedTransaction, TransactionRequest


class Signer:
    """交易签名器（私钥只保存在 LocalAccount 内，不对外暴露）"""

    def __init__(self, private_key: Union[str, bytes]):
        """
        初始化签名器

        Args:
            private_key: 32 字节私钥（hex 字符串可带或不带 0x 前缀）

        Raises:
            InvalidKeyError: 私钥格式错误
        """
        if isinstance(private_key, str):
            private_key = private_key.strip()
            if private_key and not private_key.startswith("0x"):
                private_key = "0x" + private_key

        try:
            self._account: LocalAccount = Account.from_key(private_key)
        except (ValueError, TypeError, KeyValidationError) as e:
            # 不把私钥内容带进错误信息
            raise InvalidKeyError(f"Invalid private key: {type(e).__name__}") from None

    @property
    def address(self) -> str:
        """发送方地址（checksum 格式）"""
        return self._account.address

    def sign(self, request: TransactionRequest) -> SignedTransaction:
        """
        对交易请求签名

        Args:
            request: 已确定 nonce / gasPrice / gas 的交易请求

        Returns:
            SignedTransaction

        Raises:
            EncodingError: 交易字段无法序列化
        """
        if Web3.to_checksum_address(request.from_address) != self.address:
            raise EncodingError(
                f"Request sender {request.from_address} does not match signer {self.address}"
            )

        try:
            signed = self._account.sign_transaction(request.to_sign_dict())
        except (TypeError, ValueError) as e:
            raise EncodingError(f"Cannot sign transaction: {e}") from e

        return SignedTransaction(
            raw_payload=bytes(signed.raw_transaction),
            hash=Web3.to_hex(signed.hash),
        )

    def __repr__(self) -> str:
        return f"Signer(address={self.address})"
