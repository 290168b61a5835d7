"""
合约事件监听
后台任务轮询 eth_getLogs，把解码后的事件放进队列；
单条日志解码失败或网络错误只上报，不终止订阅。
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional, Union

from web3 import Web3

from .contract_binding import ContractBinding
from .errors import ChainError, DecodingError
from .models import EventRecord

logger = logging.getLogger(__name__)

_STOP = object()

EventCallback = Callable[[EventRecord], Any]
ErrorCallback = Callable[[ChainError], Any]


class EventSubscription:
    """
    一个事件订阅：后台轮询任务 + 事件队列

    可以直接 `async for item in subscription` 消费，item 是 EventRecord 或 ChainError。
    """

    def __init__(self, event_name: str, on_stop: Optional[Callable[["EventSubscription"], None]] = None):
        self.event_name = event_name
        self._on_stop = on_stop
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._producer: Optional["asyncio.Task[None]"] = None
        self._consumer: Optional["asyncio.Task[None]"] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return not self._stopped and self._producer is not None and not self._producer.done()

    def pending(self) -> int:
        """队列中尚未消费的条目数"""
        return self._queue.qsize()

    async def publish(self, item: Union[EventRecord, ChainError]) -> None:
        await self._queue.put(item)

    def __aiter__(self) -> "EventSubscription":
        return self

    async def __anext__(self) -> Union[EventRecord, ChainError]:
        item = await self._queue.get()
        if item is _STOP:
            # 让后续的迭代也能结束
            self._queue.put_nowait(_STOP)
            raise StopAsyncIteration
        return item

    def cancel(self) -> bool:
        """
        不等待的停止：取消轮询并放入结束标记，消费任务处理完已入队的条目后自行退出

        Returns:
            本次调用是否真正执行了停止（已停止过返回 False）
        """
        if self._stopped:
            return False
        self._stopped = True

        producer = self._producer
        if producer is not None:
            if producer.done() and not producer.cancelled() and producer.exception() is not None:
                logger.error(
                    "Polling task for %s events died: %r", self.event_name, producer.exception()
                )
            producer.cancel()

        # 轮询任务此刻挂起在 await 上，取消后不会再往队列里放东西
        self._queue.put_nowait(_STOP)

        if self._on_stop is not None:
            self._on_stop(self)
        return True

    async def stop(self) -> None:
        """停止轮询，并等待已入队的事件被处理完"""
        if not self.cancel():
            return

        if self._producer is not None:
            await asyncio.gather(self._producer, return_exceptions=True)
        if self._consumer is not None:
            await self._consumer

        logger.info("Stopped listening for %s events", self.event_name)

    def __repr__(self) -> str:
        return f"EventSubscription(event={self.event_name}, running={self.running})"


class EventListener:
    """合约事件监听器"""

    def __init__(
        self,
        connection: Any,
        binding: ContractBinding,
        poll_interval: float = 2.0,
        max_block_range: int = 1000
    ):
        """
        初始化事件监听器

        Args:
            connection: 节点连接（NodeConnection 或同接口对象）
            binding: 合约绑定
            poll_interval: 轮询间隔（秒）
            max_block_range: 单次 eth_getLogs 查询的最大区块数（避免 RPC 限制）
        """
        self.connection = connection
        self.binding = binding
        self.poll_interval = poll_interval
        self.max_block_range = max_block_range
        self._subscriptions: List[EventSubscription] = []

    def stream(self, event_name: str, from_block: Optional[int] = None) -> EventSubscription:
        """
        开始监听事件，事件通过订阅对象的队列传出

        Args:
            event_name: 事件名
            from_block: 起始区块（None 表示只监听之后的新区块）

        Returns:
            EventSubscription
        """
        self.binding.event(event_name)

        subscription = EventSubscription(event_name, on_stop=self._discard)
        subscription._producer = asyncio.create_task(
            self._poll(subscription, from_block),
            name=f"listen-{event_name}",
        )
        self._subscriptions.append(subscription)
        logger.info("Listening for %s events on %s", event_name, self.binding.address)
        return subscription

    def subscribe(
        self,
        event_name: str,
        callback: EventCallback,
        on_error: Optional[ErrorCallback] = None,
        from_block: Optional[int] = None
    ) -> EventSubscription:
        """
        监听事件，每条事件调用一次 callback

        Args:
            event_name: 事件名
            callback: 事件回调（普通函数或协程函数）
            on_error: 错误回调（默认写日志）
            from_block: 起始区块

        Returns:
            EventSubscription（调用 stop() 结束监听）
        """
        subscription = self.stream(event_name, from_block)
        subscription._consumer = asyncio.create_task(
            self._dispatch(subscription, callback, on_error or self._log_error),
            name=f"dispatch-{event_name}",
        )
        return subscription

    async def stop_all(self) -> None:
        """停止所有订阅"""
        for subscription in list(self._subscriptions):
            await subscription.stop()

    @property
    def subscriptions(self) -> List[EventSubscription]:
        """尚未停止的订阅"""
        return list(self._subscriptions)

    # ============ 内部实现 ============

    def _discard(self, subscription: EventSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def _poll(self, subscription: EventSubscription, from_block: Optional[int]) -> None:
        event_name = subscription.event_name
        topic = Web3.to_hex(self.binding.event_topic(event_name))
        next_block = from_block

        while True:
            try:
                head = await self.connection.get_block_number()
                if next_block is None:
                    next_block = head + 1

                while next_block <= head:
                    batch_end = min(next_block + self.max_block_range - 1, head)
                    logs = await self.connection.get_logs({
                        "address": self.binding.address,
                        "topics": [topic],
                        "fromBlock": next_block,
                        "toBlock": batch_end,
                    })
                    for log in logs:
                        try:
                            record = self.binding.decode_event(event_name, log)
                        except DecodingError as e:
                            await subscription.publish(e)
                            continue
                        await subscription.publish(record)
                    next_block = batch_end + 1
            except ChainError as e:
                # 网络错误下次轮询再试，不终止订阅
                logger.warning("Polling %s events failed: %s", event_name, e)
                await subscription.publish(e)

            await asyncio.sleep(self.poll_interval)

    async def _dispatch(
        self,
        subscription: EventSubscription,
        callback: EventCallback,
        on_error: ErrorCallback
    ) -> None:
        async for item in subscription:
            handler = on_error if isinstance(item, ChainError) else callback
            try:
                result = handler(item)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("%s event handler raised", subscription.event_name)

    @staticmethod
    def _log_error(error: ChainError) -> None:
        logger.error("Error in event listener: %s", error)

    def __repr__(self) -> str:
        return f"EventListener(address={self.binding.address}, subscriptions={len(self._subscriptions)})"
