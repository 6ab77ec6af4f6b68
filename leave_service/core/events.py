import logging
from typing import Optional

import aio_pika
from aio_pika import ExchangeType, Message
from aio_pika.abc import AbstractExchange
from aio_pika.exceptions import AMQPError
from fastapi import FastAPI

from leave_service.schemas.message import LeaveEventMessage

logger = logging.getLogger(__name__)

RABBITMQ_EXCHANGE = "leave"
ROUTING_KEY_SUBMITTED = "leave.submitted"
ROUTING_KEY_STATUS_CHANGED = "leave.status_changed"


class LeaveEventPublisher:
    """
    연차 신청 / 상태 변경 이벤트를 exchange로 publish.
    exchange가 없으면 (RABBITMQ_URL 미설정) 아무 것도 하지 않는다.
    """

    def __init__(self, exchange: Optional[AbstractExchange] = None) -> None:
        self.exchange = exchange

    @property
    def enabled(self) -> bool:
        return self.exchange is not None

    async def publish(self, routing_key: str, record, previous_status: Optional[str] = None) -> None:
        if self.exchange is None:
            return

        msg = LeaveEventMessage(
            event=routing_key,
            leaveId=record.id,
            empId=record.emp_id,
            leaveType=record.leave_type,
            fromDate=record.from_date,
            toDate=record.to_date,
            status=record.status,
            previousStatus=previous_status,
        )
        message = Message(
            body=msg.model_dump_json().encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )

        # 이미 커밋된 변경이므로 publish 실패가 요청 자체를 실패시키지는 않는다
        try:
            await self.exchange.publish(message, routing_key=routing_key)
        except AMQPError:
            logger.exception(
                "Failed to publish %s for leave %s", routing_key, record.id
            )


async def init_events(app: FastAPI, rabbitmq_url: Optional[str]) -> None:
    if not rabbitmq_url:
        app.state.leave_events = LeaveEventPublisher()
        logger.info("RABBITMQ_URL not set, leave events disabled")
        return

    connection = await aio_pika.connect_robust(rabbitmq_url)
    channel = await connection.channel()
    exchange = await channel.declare_exchange(
        RABBITMQ_EXCHANGE,
        ExchangeType.DIRECT,
        durable=True,
    )

    app.state.rabbit_connection = connection
    app.state.rabbit_channel = channel
    app.state.leave_events = LeaveEventPublisher(exchange)
    logger.info("Publishing leave events to exchange %r", RABBITMQ_EXCHANGE)


async def close_events(app: FastAPI) -> None:
    connection = getattr(app.state, "rabbit_connection", None)
    if connection:
        await connection.close()
