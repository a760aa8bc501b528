"""
tests.test_rate_limit
~~~~~~~~~~~~~~~~~~~~~

WebSocket 聊天限流器单元测试。
"""
import time

from watchparty.core.rate_limit import WebSocketRateLimiter


def test_websocket_rate_limiter_unit():
    """测试 WebSocket 内存限流器的基础逻辑"""
    limiter = WebSocketRateLimiter(interval_seconds=0.2)
    client_id = "conn-1"

    # 第一次发消息应该允许
    assert limiter.is_allowed(client_id) is True

    # 立刻发第二次应该被拦截
    assert limiter.is_allowed(client_id) is False

    # 等待超过间隔时间后应该放行
    time.sleep(0.3)
    assert limiter.is_allowed(client_id) is True

    # 最后清理记录
    limiter.remove_client(client_id)
    assert client_id not in limiter._last_message_time


def test_clients_are_limited_independently():
    limiter = WebSocketRateLimiter(interval_seconds=60)

    assert limiter.is_allowed("conn-1") is True
    assert limiter.is_allowed("conn-2") is True
    assert limiter.is_allowed("conn-1") is False


def test_zero_interval_never_limits():
    limiter = WebSocketRateLimiter(interval_seconds=0)

    assert all(limiter.is_allowed("conn-1") for _ in range(5))


def test_remove_unknown_client_is_noop():
    WebSocketRateLimiter().remove_client("ghost")
