"""Transcript-to-prompt formatting for the destination input surface."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from thread_relay.models import Message

MESSAGES_PLACEHOLDER = "{MESSAGES}"

DEFAULT_SYSTEM_PROMPT = """Please summarize the following Slack thread (answer in Markdown):

**Note: the content below is Markdown and includes clickable links and user mentions**

{MESSAGES}

Please provide:
1. **Main topics discussed**
  - If there are several topics, list them separately and point to the related messages.
2. **Key decisions or conclusions**
  - If there are several decisions, list them separately and point to the related messages.
3. **Follow-up action items**
  - If there are several action items, list them separately and name the owner of each.
4. **Other notable points**
  - List anything else important, with the related messages.

*Keep the Markdown formatting in your answer, especially links and user mentions*"""


@dataclass(frozen=True)
class ThreadOverview:
    participants: tuple[str, ...]
    message_count: int
    time_range: str
    length_bucket: str


def format_message_block(messages: Sequence[Message]) -> str:
    return "\n".join(
        f"{index}. **{message.user}** ({message.timestamp}):\n{message.text}\n"
        for index, message in enumerate(messages, start=1)
    )


def format_transcript(messages: Sequence[Message], custom_prompt: str | None = None) -> str:
    """Render numbered message blocks inside the custom prompt, or the default one.

    A custom prompt containing ``{MESSAGES}`` gets the blocks substituted at the first
    placeholder; any other non-blank custom prompt is followed by a blank line and the blocks.
    """
    block = format_message_block(messages)
    if custom_prompt and custom_prompt.strip():
        if MESSAGES_PLACEHOLDER in custom_prompt:
            return custom_prompt.replace(MESSAGES_PLACEHOLDER, block, 1)
        return f"{custom_prompt}\n\n{block}"
    return DEFAULT_SYSTEM_PROMPT.replace(MESSAGES_PLACEHOLDER, block, 1)


def thread_overview(messages: Sequence[Message]) -> ThreadOverview:
    participants = tuple(dict.fromkeys(message.user for message in messages if message.user))
    timestamps = [message.timestamp for message in messages if message.timestamp]
    if len(timestamps) > 1:
        time_range = f"{timestamps[0]} - {timestamps[-1]}"
    else:
        time_range = timestamps[0] if timestamps else "unknown"

    total_chars = sum(len(message.text) for message in messages)
    if total_chars > 2000:
        length_bucket = "long"
    elif total_chars > 500:
        length_bucket = "medium"
    else:
        length_bucket = "short"
    return ThreadOverview(
        participants=participants,
        message_count=len(messages),
        time_range=time_range,
        length_bucket=length_bucket,
    )
