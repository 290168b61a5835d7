"""
测试 EventListener 模块
"""

import asyncio

import pytest
from eth_abi import encode

from user_registry.blockchain import DecodingError, EventListener, EventRecord, NetworkError


def _log(binding, name, block, data=None):
    return {
        "topics": [binding.event_topic("UserAdded")],
        "data": data if data is not None else encode(
            ["string", "uint256", "string"], [name, 30, f"{name.lower()}@example.org"]
        ),
        "blockNumber": block,
    }


@pytest.fixture
def listener(node, binding):
    return EventListener(node, binding, poll_interval=0.01, max_block_range=2)


async def _collect(expected, timeout=2):
    """返回 (items, callback)，callback 收到 expected 条后结束等待"""
    items = []
    done = asyncio.Event()

    def callback(item):
        items.append(item)
        if len(items) >= expected:
            done.set()

    return items, callback, lambda: asyncio.wait_for(done.wait(), timeout=timeout)


class TestSubscribe:
    """测试回调式订阅"""

    @pytest.mark.asyncio
    async def test_delivers_events_in_order(self, listener, node, binding):
        """测试跨多个查询批次按区块顺序交付事件"""
        node.logs = [_log(binding, "Ada", 1), _log(binding, "Bob", 3), _log(binding, "Cy", 5)]
        node.block_number = 5
        events, callback, wait = await _collect(3)

        subscription = listener.subscribe("UserAdded", callback, from_block=1)
        await wait()
        await subscription.stop()

        assert [e.args["name"] for e in events] == ["Ada", "Bob", "Cy"]
        assert all(isinstance(e, EventRecord) for e in events)
        # max_block_range=2 时 1..5 需要三次查询
        assert node.calls["get_logs"] >= 3

    @pytest.mark.asyncio
    async def test_bad_log_does_not_stop_subscription(self, listener, node, binding):
        """测试单条日志解码失败只上报错误，后续事件照常交付"""
        node.logs = [_log(binding, "Ada", 1, data=b"\x00" * 5), _log(binding, "Bob", 2)]
        node.block_number = 2
        events, callback, wait = await _collect(1)
        errors = []

        subscription = listener.subscribe("UserAdded", callback, on_error=errors.append, from_block=1)
        await wait()
        await subscription.stop()

        assert [e.args["name"] for e in events] == ["Bob"]
        assert len(errors) == 1
        assert isinstance(errors[0], DecodingError)

    @pytest.mark.asyncio
    async def test_network_error_is_reported_and_polling_continues(self, listener, node, binding):
        node.logs = [_log(binding, "Ada", 1)]
        node.block_number = 1
        node.log_errors = [NetworkError("connection reset")]
        events, callback, wait = await _collect(1)
        errors = []

        subscription = listener.subscribe("UserAdded", callback, on_error=errors.append, from_block=1)
        await wait()
        await subscription.stop()

        assert [e.args["name"] for e in events] == ["Ada"]
        assert [type(e) for e in errors] == [NetworkError]

    @pytest.mark.asyncio
    async def test_async_callback(self, listener, node, binding):
        node.logs = [_log(binding, "Ada", 1)]
        node.block_number = 1
        received = []
        done = asyncio.Event()

        async def callback(event):
            await asyncio.sleep(0)
            received.append(event.args["email"])
            done.set()

        subscription = listener.subscribe("UserAdded", callback, from_block=1)
        await asyncio.wait_for(done.wait(), timeout=2)
        await subscription.stop()

        assert received == ["ada@example.org"]

    @pytest.mark.asyncio
    async def test_callback_exception_is_logged(self, listener, node, binding, caplog):
        """测试回调抛出的异常不会终止订阅"""
        node.logs = [_log(binding, "Ada", 1), _log(binding, "Bob", 2)]
        node.block_number = 2
        events, collect, wait = await _collect(2)

        def callback(event):
            collect(event)
            if event.args["name"] == "Ada":
                raise RuntimeError("handler failed")

        subscription = listener.subscribe("UserAdded", callback, from_block=1)
        await wait()
        await subscription.stop()

        assert [e.args["name"] for e in events] == ["Ada", "Bob"]
        assert "event handler raised" in caplog.text

    @pytest.mark.asyncio
    async def test_starts_after_head_by_default(self, listener, node, binding):
        """测试不指定起始区块时只交付之后的新事件"""
        node.logs = [_log(binding, "Old", 100)]
        events, callback, wait = await _collect(1)

        subscription = listener.subscribe("UserAdded", callback)
        await asyncio.sleep(0.05)
        node.logs.append(_log(binding, "New", 101))
        node.block_number = 101
        await wait()
        await subscription.stop()

        assert [e.args["name"] for e in events] == ["New"]

    def test_unknown_event(self, listener):
        with pytest.raises(DecodingError):
            listener.subscribe("UserRemoved", print)


class TestStream:
    """测试队列式消费"""

    @pytest.mark.asyncio
    async def test_async_iteration(self, listener, node, binding):
        node.logs = [_log(binding, "Ada", 1), _log(binding, "Bob", 2)]
        node.block_number = 2

        subscription = listener.stream("UserAdded", from_block=1)
        names = []
        async for item in subscription:
            names.append(item.args["name"])
            if len(names) == 2:
                break
        await subscription.stop()

        assert names == ["Ada", "Bob"]

    @pytest.mark.asyncio
    async def test_iteration_ends_after_stop(self, listener, node):
        subscription = listener.stream("UserAdded", from_block=1)
        await subscription.stop()

        items = [item async for item in subscription]

        assert items == []
        assert not subscription.running


class TestStop:
    """测试停止监听"""

    @pytest.mark.asyncio
    async def test_stop_drains_queue(self, listener, node, binding):
        """测试 stop 返回前已入队的事件都已交付"""
        node.logs = [_log(binding, name, 1) for name in ("Ada", "Bob", "Cy")]
        node.block_number = 1
        delivered = []

        async def slow_callback(event):
            await asyncio.sleep(0.01)
            delivered.append(event.args["name"])

        subscription = listener.subscribe("UserAdded", slow_callback, from_block=1)
        while subscription.pending() + len(delivered) < 3:
            await asyncio.sleep(0.005)
        await subscription.stop()

        assert delivered == ["Ada", "Bob", "Cy"]
        assert subscription.pending() == 0

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, listener):
        subscription = listener.subscribe("UserAdded", print)
        assert subscription.running

        await subscription.stop()
        await subscription.stop()

        assert not subscription.running

    @pytest.mark.asyncio
    async def test_no_delivery_after_stop(self, listener, node, binding):
        delivered = []
        subscription = listener.subscribe("UserAdded", delivered.append)
        await asyncio.sleep(0.03)
        await subscription.stop()

        node.logs.append(_log(binding, "Late", 101))
        node.block_number = 101
        await asyncio.sleep(0.05)

        assert delivered == []

    @pytest.mark.asyncio
    async def test_stop_all(self, listener):
        first = listener.subscribe("UserAdded", print)
        second = listener.stream("UserAdded")

        await listener.stop_all()

        assert not first.running
        assert not second.running

    @pytest.mark.asyncio
    async def test_stopped_subscriptions_are_released(self, listener):
        """测试反复订阅 / 停止不会累积已停止的订阅"""
        for _ in range(5):
            subscription = listener.subscribe("UserAdded", print)
            assert listener.subscriptions == [subscription]
            await subscription.stop()

        assert listener.subscriptions == []

    @pytest.mark.asyncio
    async def test_cancel_lets_consumer_drain_and_exit(self, listener, node, binding):
        """测试不等待的 cancel：消费任务处理完已入队事件后自行结束"""
        node.logs = [_log(binding, "Ada", 1)]
        node.block_number = 1
        delivered = []

        subscription = listener.subscribe("UserAdded", delivered.append, from_block=1)
        while subscription.pending() + len(delivered) < 1:
            await asyncio.sleep(0.005)

        assert subscription.cancel() is True
        assert subscription.cancel() is False
        assert listener.subscriptions == []

        await asyncio.wait_for(subscription._consumer, timeout=2)
        assert [e.args["name"] for e in delivered] == ["Ada"]
