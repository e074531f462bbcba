# Dummy model client for local dev and testing without API calls.

import json
import logging

from ..types import Payload, TextPart

logger = logging.getLogger(__name__)


class EchoDevClient:
    def __init__(self):
        self.model = "echo-dev"

    async def call(self, payload: Payload, context: str = "API Call") -> str:
        user_inputs = []
        for m in payload.messages:
            if m.role != "user":
                continue
            if isinstance(m.content, str):
                user_inputs.append(m.content)
            else:
                user_inputs.extend(p.text for p in m.content if isinstance(p, TextPart))
        last = user_inputs[-1] if user_inputs else "(no user input)"
        logger.info("%s - echo client answering (%d chars)", context, len(last))

        if payload.response_format and payload.response_format.get("type") == "json_object":
            return json.dumps({"questions": [], "echo": last})
        return f"[ECHO RESPONSE]\n{last}"
