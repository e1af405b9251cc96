"""Client modules for external service integrations."""

from src.clients.cognito_client import CognitoIdentityProvider
from src.clients.sms_client import MessageSender, SNSMessageSender

__all__ = [
    "CognitoIdentityProvider",
    "MessageSender",
    "SNSMessageSender",
]
