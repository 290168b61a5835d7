"""
UserRegistry 合约交互模块
注册用户、查询用户、监听 UserAdded 事件
"""

import logging
from typing import Any, List, Optional

from .contract_binding import ContractBinding
from .contract_reader import ContractReader
from .event_listener import ErrorCallback, EventCallback, EventListener, EventSubscription
from .models import EventRecord, Receipt, UserRecord
from .node_connection import NodeConnection
from .pipeline import DEFAULT_GAS_LIMIT, TransactionPipeline
from .signer import Signer

logger = logging.getLogger(__name__)


# UserRegistry 合约 ABI
USER_REGISTRY_ABI = [
    # addUser - 注册用户
    {
        "constant": False,
        "inputs": [
            {"internalType": "string", "name": "_name", "type": "string"},
            {"internalType": "uint256", "name": "_age", "type": "uint256"},
            {"internalType": "string", "name": "_email", "type": "string"}
        ],
        "name": "addUser",
        "outputs": [],
        "type": "function"
    },
    # UserAdded 事件
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "internalType": "string", "name": "name", "type": "string"},
            {"indexed": False, "internalType": "uint256", "name": "age", "type": "uint256"},
            {"indexed": False, "internalType": "string", "name": "email", "type": "string"}
        ],
        "name": "UserAdded",
        "type": "event"
    },
    # getAllUserNames - 所有用户名
    {
        "constant": True,
        "inputs": [],
        "name": "getAllUserNames",
        "outputs": [
            {"internalType": "string[]", "name": "", "type": "string[]"}
        ],
        "type": "function"
    },
    # getUserByName - 按名称查询用户
    {
        "constant": True,
        "inputs": [
            {"internalType": "string", "name": "_name", "type": "string"}
        ],
        "name": "getUserByName",
        "outputs": [
            {"internalType": "string", "name": "name", "type": "string"},
            {"internalType": "uint256", "name": "age", "type": "uint256"},
            {"internalType": "string", "name": "email", "type": "string"}
        ],
        "type": "function"
    }
]

USER_ADDED_EVENT = "UserAdded"


def log_user_added(event: EventRecord) -> None:
    """默认的 UserAdded 回调：写日志"""
    logger.info("UserAdded event: %s", event.args)


class UserRegistry:
    """UserRegistry 合约交互类"""

    def __init__(
        self,
        connection: Any,
        contract_address: str,
        signer: Signer,
        chain_id: Optional[int] = None,
        gas_limit: int = DEFAULT_GAS_LIMIT,
        serialize_submissions: bool = False,
        event_poll_interval: float = 2.0
    ):
        """
        初始化 UserRegistry

        Args:
            connection: 节点连接（所有组件共享）
            contract_address: 合约地址
            signer: 交易签名器
            chain_id: 链 ID（不提供则从节点读取）
            gas_limit: 估算前的占位 gas limit
            serialize_submissions: 是否串行化交易提交
            event_poll_interval: 事件轮询间隔（秒）
        """
        self.connection = connection
        self.signer = signer
        self.binding = ContractBinding(contract_address, USER_REGISTRY_ABI)

        self.pipeline = TransactionPipeline(
            connection,
            self.binding,
            signer,
            chain_id=chain_id,
            gas_limit=gas_limit,
            serialize=serialize_submissions,
        )
        self.reader = ContractReader(connection, self.binding)
        self.listener = EventListener(connection, self.binding, poll_interval=event_poll_interval)
        self._user_added: Optional[EventSubscription] = None

    @classmethod
    def from_settings(cls, settings: Any) -> "UserRegistry":
        """根据配置创建（连接、签名器在这里构建一次，进程内复用）"""
        connection = NodeConnection(
            settings.rpc_url,
            request_timeout=settings.request_timeout,
            receipt_timeout=settings.receipt_timeout,
            receipt_poll_interval=settings.receipt_poll_interval,
        )
        return cls(
            connection,
            settings.contract_address,
            Signer(settings.private_key),
            chain_id=settings.chain_id,
            gas_limit=settings.gas_limit,
            serialize_submissions=settings.serialize_submissions,
            event_poll_interval=settings.event_poll_interval,
        )

    @property
    def contract_address(self) -> str:
        return self.binding.address

    @property
    def sender(self) -> str:
        """发送交易的地址"""
        return self.signer.address

    # ============ 写入函数 ============

    async def add_user(self, name: str, age: int, email: str) -> Receipt:
        """
        注册用户（发送交易并等待上链）

        Args:
            name: 用户名
            age: 年龄
            email: 邮箱

        Returns:
            交易回执
        """
        return await self.pipeline.submit("addUser", name, age, email)

    # ============ 读取函数 ============

    async def get_all_user_names(self) -> List[str]:
        """获取所有用户名"""
        names = await self.reader.query("getAllUserNames")
        return list(names)

    async def get_user_by_name(self, name: str) -> UserRecord:
        """
        按名称查询用户

        不存在的用户合约返回零值记录（空名称 / 0 / 空邮箱），不视为错误
        """
        user_name, age, email = await self.reader.query("getUserByName", name)
        return UserRecord(name=user_name, age=int(age), email=email)

    # ============ 事件 ============

    @property
    def listening(self) -> bool:
        return self._user_added is not None and self._user_added.running

    def listen_user_added(
        self,
        callback: Optional[EventCallback] = None,
        on_error: Optional[ErrorCallback] = None
    ) -> EventSubscription:
        """开始监听 UserAdded 事件（已在监听时直接返回现有订阅）"""
        if self.listening:
            return self._user_added
        if self._user_added is not None:
            # 轮询任务已意外退出，先让旧的消费任务结束
            self._user_added.cancel()
        self._user_added = self.listener.subscribe(
            USER_ADDED_EVENT, callback or log_user_added, on_error=on_error
        )
        return self._user_added

    async def stop_listening(self) -> bool:
        """停止监听，返回之前是否在监听"""
        subscription, self._user_added = self._user_added, None
        if subscription is None:
            return False
        await subscription.stop()
        return True

    async def close(self) -> None:
        """停止所有监听并关闭节点连接"""
        await self.stop_listening()
        await self.listener.stop_all()
        await self.connection.close()

    def __repr__(self) -> str:
        return f"UserRegistry(address={self.contract_address})"
