"""Conversation transcript formatting and LLM-driven history compression."""

import time
import uuid
from typing import List, Optional, Sequence

from relay import config
from relay.debug_logger import get_logger
from relay.execution.usage import UsageTracker
from relay.llm.providers.base import LLMClient
from relay.models.messages import ChatMessage


COMPRESSOR_AGENT = "System_Compressor"
SUMMARY_AGENT = "Context Manager"
SUMMARY_HEADER = "**[CONTEXT COMPRESSED]**\nThe following is a summary of the earlier conversation:\n\n"

COMPRESSION_SYSTEM_PROMPT = (
    "You are a Technical Project Manager. Your task is to compress the following "
    "chat history into a detailed, structured summary."
)

COMPRESSION_PROMPT = """Analyze the conversation history below.
Identify the key topics discussed, decisions made, and technical details established.
Produce a summary that preserves all critical technical context (file paths, bug fixes, user preferences, architectural decisions) but removes conversational fluff.

Format the output as a set of topic blocks:
### Topic: [Topic Name]
- [Chronological Detail 1]
- [Chronological Detail 2]

HISTORY TO COMPRESS:
{history}
"""


def _speaker(message: ChatMessage) -> str:
    if message.role == "user":
        return "User"
    return message.agent_name or "System"


class HistoryManager:
    """Renders prior conversation for agents and summarizes it when it grows."""

    def __init__(
        self,
        usage: Optional[UsageTracker] = None,
        compress_threshold: int = config.HISTORY_COMPRESS_THRESHOLD,
        keep_recent: int = config.HISTORY_KEEP_RECENT,
    ):
        self.usage = usage
        self.compress_threshold = compress_threshold
        self.keep_recent = keep_recent

    @staticmethod
    def format_history_text(messages: Optional[Sequence[ChatMessage]]) -> str:
        """Render messages as "[User]: ..." / "[Agent]: ..." blocks.

        Returns an empty string for no history, otherwise a transcript that
        ends with a blank line so the next entry can be appended directly.
        """
        if not messages:
            return ""
        return "\n\n".join(f"[{_speaker(m)}]: {m.content}" for m in messages) + "\n\n"

    def compress_history(self, messages: List[ChatMessage], llm: LLMClient) -> List[ChatMessage]:
        """Replace all but the most recent entries with one summary entry.

        Histories at or under the threshold are returned unchanged, as is the
        original list when the summarizing call fails.
        """
        if not messages or len(messages) <= self.compress_threshold:
            return messages

        recent = messages[-self.keep_recent:]
        older = messages[:-self.keep_recent]
        history_text = "\n\n".join(
            f"[{m.role} ({m.agent_name or 'User'})]: {m.content}" for m in older
        )

        debug_logger = get_logger()
        try:
            response = llm.complete(
                COMPRESSION_SYSTEM_PROMPT,
                COMPRESSION_PROMPT.format(history=history_text),
            )
        except Exception as e:
            debug_logger.log_error("history", e, {"messages": len(messages)})
            return messages

        if self.usage is not None:
            self.usage.record(COMPRESSOR_AGENT, response.usage)

        summary = ChatMessage(
            role="system",
            content=f"{SUMMARY_HEADER}{response.text}",
            agent_name=SUMMARY_AGENT,
            id=uuid.uuid4().hex,
            timestamp=time.time(),
        )
        debug_logger.log("history", "HISTORY_COMPRESSED", {
            "summarized": len(older),
            "kept": len(recent),
        })
        return [summary] + list(recent)
