"""
合约接口绑定
把固定的 ABI 描述绑定到合约地址，负责调用参数编码、返回值解码和事件解码。
纯数据转换，不访问网络。
"""

from typing import Any, Dict, List, Mapping, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError as AbiDecodingError
from eth_abi.exceptions import EncodingError as AbiEncodingError
from eth_utils import event_signature_to_log_topic, function_signature_to_4byte_selector
from hexbytes import HexBytes
from web3 import Web3

from .errors import DecodingError, EncodingError
from .models import EventRecord


def abi_type(param: Mapping[str, Any]) -> str:
    """ABI 参数描述 -> 规范类型字符串（展开 tuple）"""
    typ = param["type"]
    if typ.startswith("tuple"):
        inner = ",".join(abi_type(c) for c in param.get("components", []))
        return f"({inner}){typ[len('tuple'):]}"
    return typ


def _is_dynamic(typ: str) -> bool:
    """indexed 参数是否只在 topic 中保存了哈希"""
    return typ in ("string", "bytes") or typ.endswith("]") or typ.startswith("(")


def _to_bytes(value: Any) -> bytes:
    try:
        return bytes(HexBytes(value))
    except (TypeError, ValueError) as e:
        raise DecodingError(f"Not a byte payload: {value!r}") from e


class ContractBinding:
    """合约 ABI 绑定（构造后不可变）"""

    def __init__(self, address: str, abi: Sequence[Mapping[str, Any]]):
        """
        初始化合约绑定

        Args:
            address: 合约地址
            abi: 合约 ABI（函数 / 事件描述列表）
        """
        self.address = Web3.to_checksum_address(address)
        self.abi = list(abi)

        self._functions: Dict[str, Mapping[str, Any]] = {}
        self._events: Dict[str, Mapping[str, Any]] = {}
        for entry in self.abi:
            kind = entry.get("type", "function")
            if kind == "function":
                self._functions.setdefault(entry["name"], entry)
            elif kind == "event":
                self._events.setdefault(entry["name"], entry)

    # ============ ABI 查询 ============

    def function(self, name: str) -> Mapping[str, Any]:
        try:
            return self._functions[name]
        except KeyError:
            raise EncodingError(f"Function {name} not found in ABI") from None

    def event(self, name: str) -> Mapping[str, Any]:
        try:
            return self._events[name]
        except KeyError:
            raise DecodingError(f"Event {name} not found in ABI") from None

    def input_types(self, function_name: str) -> List[str]:
        return [abi_type(p) for p in self.function(function_name).get("inputs", [])]

    def output_types(self, function_name: str) -> List[str]:
        return [abi_type(p) for p in self.function(function_name).get("outputs", [])]

    def selector(self, function_name: str) -> bytes:
        """函数选择器（签名 keccak256 的前 4 字节）"""
        sig = f"{function_name}({','.join(self.input_types(function_name))})"
        return function_signature_to_4byte_selector(sig)

    def event_topic(self, event_name: str) -> bytes:
        """事件签名 topic"""
        entry = self.event(event_name)
        types = ",".join(abi_type(p) for p in entry.get("inputs", []))
        return event_signature_to_log_topic(f"{event_name}({types})")

    def is_mutating(self, function_name: str) -> bool:
        """是否会修改链上状态（需要发送交易）"""
        entry = self.function(function_name)
        mutability = entry.get("stateMutability")
        if mutability is not None:
            return mutability not in ("view", "pure")
        return not entry.get("constant", False)

    # ============ 编码 / 解码 ============

    def encode_call(self, function_name: str, *args: Any) -> bytes:
        """
        编码函数调用数据

        Args:
            function_name: 函数名
            *args: 函数参数

        Returns:
            selector + ABI 编码参数

        Raises:
            EncodingError: 函数不存在，或参数个数 / 类型不匹配
        """
        types = self.input_types(function_name)
        if len(args) != len(types):
            raise EncodingError(
                f"{function_name} expects {len(types)} argument(s), got {len(args)}"
            )

        try:
            encoded = encode(types, list(args)) if types else b""
        except (AbiEncodingError, TypeError, ValueError, OverflowError) as e:
            raise EncodingError(f"Cannot encode arguments for {function_name}: {e}") from e

        return self.selector(function_name) + encoded

    def decode_result(self, function_name: str, data: Any) -> Any:
        """
        解码函数返回值

        Returns:
            无输出返回 None；单个输出返回该值；多个输出返回 tuple

        Raises:
            DecodingError: 数据被截断或格式不符
        """
        try:
            types = self.output_types(function_name)
        except EncodingError as e:
            raise DecodingError(e.message) from None

        if not types:
            return None

        raw = _to_bytes(data)
        if not raw:
            raise DecodingError(f"Empty result for {function_name} (no contract code at address?)")

        try:
            decoded = decode(types, raw)
        except (AbiDecodingError, TypeError, ValueError, OverflowError) as e:
            raise DecodingError(f"Cannot decode result of {function_name}: {e}") from e

        if len(decoded) == 1:
            return decoded[0]
        return tuple(decoded)

    def decode_event(self, event_name: str, log: Mapping[str, Any]) -> EventRecord:
        """
        解码事件日志

        Args:
            event_name: 事件名
            log: eth_getLogs 返回的日志条目

        Returns:
            EventRecord

        Raises:
            DecodingError: topic 不匹配或数据格式错误
        """
        entry = self.event(event_name)
        inputs = entry.get("inputs", [])

        try:
            topics = [_to_bytes(t) for t in log["topics"]]
            data = _to_bytes(log.get("data", b""))
        except KeyError:
            raise DecodingError(f"Log entry for {event_name} has no topics") from None

        if not entry.get("anonymous", False):
            if not topics or topics[0] != self.event_topic(event_name):
                raise DecodingError(f"Log entry is not a {event_name} event")
            topics = topics[1:]

        indexed = [p for p in inputs if p.get("indexed")]
        plain = [p for p in inputs if not p.get("indexed")]
        if len(topics) != len(indexed):
            raise DecodingError(
                f"{event_name} expects {len(indexed)} indexed topic(s), got {len(topics)}"
            )

        args: Dict[str, Any] = {}
        try:
            for param, topic in zip(indexed, topics):
                typ = abi_type(param)
                if _is_dynamic(typ):
                    # 动态类型只能拿到哈希
                    args[param["name"]] = HexBytes(topic)
                else:
                    args[param["name"]] = decode([typ], topic)[0]

            values = decode([abi_type(p) for p in plain], data) if plain else ()
        except (AbiDecodingError, TypeError, ValueError, OverflowError) as e:
            raise DecodingError(f"Cannot decode {event_name} event: {e}") from e

        for param, value in zip(plain, values):
            args[param["name"]] = value

        tx_hash = log.get("transactionHash")
        return EventRecord(
            name=event_name,
            args=args,
            block_number=log.get("blockNumber"),
            transaction_hash=Web3.to_hex(tx_hash) if isinstance(tx_hash, bytes) else tx_hash,
            log_index=log.get("logIndex"),
            address=log.get("address"),
        )

    def __repr__(self) -> str:
        return f"ContractBinding(address={self.address})"

