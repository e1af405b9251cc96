"""SMS delivery client for one-time codes."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from src.services.errors import MessageDeliveryError
from src.utils.phone import mask_phone

logger = logging.getLogger(__name__)


class MessageSender(ABC):
    """Out-of-band message delivery: a destination and a text body."""

    @abstractmethod
    async def send(self, destination: str, body: str) -> None:
        """
        Deliver a message.

        Raises:
            MessageDeliveryError: If the message could not be handed off
        """


class SNSMessageSender(MessageSender):
    """Sends transactional SMS through Amazon SNS ``publish``."""

    def __init__(self, client: Optional[Any] = None, region: Optional[str] = None, timeout: float = 3.0):
        """
        Initialize the sender.

        Args:
            client: Preconfigured boto3 SNS client. If None, one is created lazily.
            region: AWS region for the lazily created client
            timeout: Connect/read timeout for the SNS endpoint in seconds
        """
        self._client = client
        self._region = region
        self._timeout = timeout

    @property
    def client(self) -> Any:
        """Get or create the SNS client."""
        if self._client is None:
            self._client = boto3.client(
                "sns",
                region_name=self._region,
                config=Config(
                    connect_timeout=self._timeout,
                    read_timeout=self._timeout,
                    retries={"max_attempts": 1}
                )
            )
        return self._client

    async def send(self, destination: str, body: str) -> None:
        try:
            response = await asyncio.to_thread(
                self.client.publish,
                PhoneNumber=destination,
                Message=body,
                MessageAttributes={
                    "AWS.SNS.SMS.SMSType": {"DataType": "String", "StringValue": "Transactional"}
                }
            )
            logger.debug(f"SNS accepted message {response.get('MessageId')} for {mask_phone(destination)}")
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            raise MessageDeliveryError(f"SNS rejected message: {code}") from e
        except BotoCoreError as e:
            raise MessageDeliveryError(f"SNS request failed: {e}") from e
