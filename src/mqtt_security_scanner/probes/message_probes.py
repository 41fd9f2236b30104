"""
消息与主题相关的检查项
"""

import os
from typing import List

from ..logger_config import logger
from ..mqtt_client import random_string, random_topic
from ..models import CheckResult, Outcome
from .base import ProbeContext, connected_operation, ensure_encodable

MESSAGE_DENY_TOPIC = "MQTT Message Deny Topic"
TOPIC_LEVEL = "MQTT Topic Level"
TOPIC_LENGTH = "MQTT Topic Length"
MESSAGE_PAYLOAD_LENGTH = "MQTT Message Payload Length"

# MQTT 剩余长度字段可编码的最大值
MQTT_MAX_PACKET_LEN = 268435455

PAYLOAD_TOPIC = "payload-len-scanner"

# 超出主题限制时可接受的结果：断开连接，或 MQTT 5 的 PUBACK/SUBACK 拒绝原因码
TOPIC_REJECTIONS = frozenset({Outcome.TRANSPORT_CLOSED, Outcome.REJECTED_LIMIT})


def _connect_failure(label: str, outcome: Outcome) -> str:
    if outcome is Outcome.TIMED_OUT:
        return f"MQTT {label} connect timed out"
    return f"MQTT {label} connect failed ({outcome.value})"


async def message_deny_topic(ctx: ProbeContext) -> CheckResult:
    """每个禁止主题的订阅都必须失败，每个主题使用独立的连接"""
    messages: List[str] = []

    for topic in ctx.config.broker.deny_topics:
        connected, subscribed = await connected_operation(
            ctx, MESSAGE_DENY_TOPIC, lambda handle: handle.subscribe(topic),
            prefix="mqtt-security-scanner-deny-topic",
        )
        if subscribed is None:
            messages.append(_connect_failure("message deny topic", connected))
        elif subscribed is Outcome.ACCEPTED:
            messages.append(f"MQTT deny topic {topic} does not work")
        elif subscribed is Outcome.TIMED_OUT:
            messages.append(f"MQTT deny topic {topic} subscribe timed out")
        else:
            logger.debug(f"禁止主题 {topic} 订阅被拒绝: {subscribed.value}")

    return CheckResult.from_messages(MESSAGE_DENY_TOPIC, messages)


async def topic_level(ctx: ProbeContext) -> CheckResult:
    """向超出层级限制的主题发布消息，Broker 必须断开连接或拒绝发布"""
    levels = ctx.config.limit.topic_level + ctx.config.settings.topic_level_overshoot
    topic = random_topic(levels)
    ensure_encodable(len(topic), "limit.topic_level", TOPIC_LEVEL)

    connected, published = await connected_operation(
        ctx, TOPIC_LEVEL, lambda handle: handle.publish(topic, b"MQTT Topic Level"),
        prefix="mqtt-security-scanner-topic-level",
    )

    messages: List[str] = []
    if published is None:
        messages.append(_connect_failure("topic level", connected))
    elif published is Outcome.ACCEPTED:
        messages.append("MQTT topic level limit do not work")
    elif published is Outcome.TIMED_OUT:
        messages.append("MQTT topic level publish timed out")
    elif published not in TOPIC_REJECTIONS:
        messages.append(f"MQTT topic level limit do not work, broker answered {published.value}")

    return CheckResult.from_messages(TOPIC_LEVEL, messages)


async def topic_length(ctx: ProbeContext) -> CheckResult:
    """订阅超出长度限制的主题，Broker 必须断开连接或拒绝订阅"""
    length = ctx.config.limit.topic_len + ctx.config.settings.topic_len_overshoot
    ensure_encodable(length, "limit.topic_len", TOPIC_LENGTH)
    topic = random_string(length)

    connected, subscribed = await connected_operation(
        ctx, TOPIC_LENGTH, lambda handle: handle.subscribe(topic),
        prefix="mqtt-security-scanner-topic-length",
    )

    messages: List[str] = []
    if subscribed is None:
        messages.append(_connect_failure("topic length", connected))
    elif subscribed is Outcome.ACCEPTED:
        messages.append("MQTT topic length limit do not work")
    elif subscribed is Outcome.TIMED_OUT:
        messages.append("MQTT topic length subscribe timed out")
    elif subscribed not in TOPIC_REJECTIONS:
        messages.append(f"MQTT topic length limit do not work, broker answered {subscribed.value}")

    return CheckResult.from_messages(TOPIC_LENGTH, messages)


async def message_payload_length(ctx: ProbeContext) -> CheckResult:
    """发布超出长度限制的负载，发布必须失败"""
    length = ctx.config.limit.payload_len + ctx.config.settings.payload_overshoot
    # 固定头之外还有主题、报文标识符等字段
    ensure_encodable(length + len(PAYLOAD_TOPIC) + 4, "limit.payload_len", MESSAGE_PAYLOAD_LENGTH,
                     maximum=MQTT_MAX_PACKET_LEN)
    payload = os.urandom(length)

    connected, published = await connected_operation(
        ctx, MESSAGE_PAYLOAD_LENGTH, lambda handle: handle.publish(PAYLOAD_TOPIC, payload),
        prefix="mqtt-security-scanner-message-payload-length",
    )

    messages: List[str] = []
    if published is None:
        messages.append(_connect_failure("message payload length", connected))
    elif published is Outcome.ACCEPTED:
        messages.append("MQTT message payload length limit do not work")
    elif published is Outcome.TIMED_OUT:
        messages.append("MQTT message payload length publish timed out")

    return CheckResult.from_messages(MESSAGE_PAYLOAD_LENGTH, messages)
