from .echo_dev_client import EchoDevClient
from .openai_client import OpenAIClient

__all__ = ["EchoDevClient", "OpenAIClient"]
