"""Single-item extraction: injected DOM snippet plus pure payload validation."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging
import re
from typing import Any

from thread_relay.errors import ExtractionError
from thread_relay.models import UNKNOWN_USER, Message

logger = logging.getLogger(__name__)

MAX_USER_NAME_LENGTH = 50

# Input: {user: [...], timestamp: [...], content: [...]} selector lists.
# Output: {skipped: bool, userCandidates: string[], timestamp: string, text: string}.
EXTRACT_MESSAGE_JS = r"""
(el, sel) => {
  const inputClasses = ['c-texty_input', 'ql-container', 'ql-editor', 'c-composer',
    'c-message_input', 'p-message_input', 'p-thread_separator_row_generic'];
  const isInput = (node) => {
    const qa = node.getAttribute && node.getAttribute('data-qa');
    if (qa && (qa === 'message_input' || qa.includes('input') || qa.includes('composer'))) return true;
    if (node.classList && inputClasses.some((name) => node.classList.contains(name))) return true;
    return Boolean(node.querySelector && node.querySelector(
      '[data-qa="message_input"], .ql-editor, [contenteditable="true"], textarea, .p-thread_separator_row_generic'));
  };
  if (!el || isInput(el)) return {skipped: true, userCandidates: [], timestamp: '', text: ''};

  const userCandidates = [];
  for (const selector of sel.user) {
    const node = el.querySelector(selector);
    if (node) userCandidates.push(node.textContent || '');
  }

  let timestamp = '';
  for (const selector of sel.timestamp) {
    const node = el.querySelector(selector);
    if (node) { timestamp = node.getAttribute('title') || (node.textContent || '').trim(); break; }
  }

  const skipTags = new Set(['SCRIPT', 'STYLE', 'BUTTON', 'INPUT', 'TEXTAREA', 'SELECT', 'OPTION']);
  const blockTags = new Set(['P', 'DIV', 'LI', 'PRE', 'BLOCKQUOTE', 'H1', 'H2', 'H3', 'H4']);
  const walk = (node) => {
    if (node.nodeType === Node.TEXT_NODE) return node.textContent;
    if (node.nodeType !== Node.ELEMENT_NODE || skipTags.has(node.tagName) || isInput(node)) return '';
    if (node.tagName === 'BR') return '\n';
    const inner = () => Array.from(node.childNodes).map(walk).join('');
    if (node.classList.contains('c-member_slug')) return ` ${node.getAttribute('data-member-label') || node.textContent} `;
    if (node.tagName === 'A' && node.getAttribute('href')) return ` [${node.textContent.trim()}](${node.getAttribute('href')}) `;
    if (node.tagName === 'STRONG' || node.tagName === 'B') return `**${inner()}**`;
    if (node.tagName === 'EM' || node.tagName === 'I') return `*${inner()}*`;
    if (node.tagName === 'CODE') return `\`${inner()}\``;
    if (node.tagName === 'LI') return `\n- ${inner()}`;
    const text = inner();
    return blockTags.has(node.tagName) ? `${text}\n` : text;
  };

  let content = null;
  for (const selector of sel.content) {
    content = el.querySelector(selector);
    if (content) break;
  }
  return {skipped: false, userCandidates, timestamp, text: walk(content || el)};
}
"""

_INVALID_USER_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^\s*$",
        r"^[\d\s.\-+()]+$",
        r"^(reply|thread|view|show|load|more|less)$",
        r"^\d+\s+(replies?|people)",
        r"^(also\s+send\s+to|reply…)",
        r"^[.,!?:;]+$",
        r"^(am|pm|at|on|in|the|and|or|but|so|also)$",
    )
)


def clean_user_name(raw: str) -> str:
    """Collapse whitespace and remove doubled renderings such as ``Ann LeeAnn Lee``."""
    name = raw.replace("\u00a0", " ").replace("&nbsp;", " ")
    name = re.sub(r"\s+", " ", name).strip()
    if not name:
        return name

    words = name.split(" ")
    if len(words) >= 4 and len(words) % 2 == 0:
        half = len(words) // 2
        if words[:half] == words[half:]:
            return " ".join(words[:half])

    deduped: list[str] = []
    for word in words:
        if not deduped or deduped[-1] != word:
            deduped.append(word)
    if len(deduped) >= 3 and deduped[0] == deduped[1]:
        del deduped[1]
    return " ".join(deduped)


def is_valid_user_name(name: str) -> bool:
    if not name or len(name) > MAX_USER_NAME_LENGTH:
        return False
    return not any(pattern.search(name) for pattern in _INVALID_USER_PATTERNS)


def clean_message_text(text: str) -> str:
    cleaned = re.sub(r"[ \t]+", " ", text)
    cleaned = re.sub(r" *\n *", "\n", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    cleaned = re.sub(r"\n\n(\d+\.)", r"\n\1", cleaned)
    cleaned = re.sub(r"\n\n(-)", r"\n\1", cleaned)
    cleaned = re.sub(r"\]\s*\(\s*", "](", cleaned)
    return cleaned.strip()


def message_from_payload(payload: Any) -> Message | None:
    """Validate one extraction payload; ``None`` means the element is not a message."""
    if not isinstance(payload, Mapping):
        raise ExtractionError(f"Extraction payload must be an object, got {type(payload).__name__}.")
    if payload.get("skipped"):
        return None

    candidates = payload.get("userCandidates") or []
    if not isinstance(candidates, Sequence) or isinstance(candidates, str):
        raise ExtractionError("Extraction payload 'userCandidates' must be a list of strings.")

    user = UNKNOWN_USER
    for candidate in candidates:
        cleaned = clean_user_name(str(candidate))
        if is_valid_user_name(cleaned):
            user = cleaned
            break

    timestamp = str(payload.get("timestamp") or "").strip()
    text = clean_message_text(str(payload.get("text") or ""))
    return Message(user=user, text=text, timestamp=timestamp)


class PlaywrightTextExtractor:
    def __init__(self, selectors: Mapping[str, Sequence[str]]) -> None:
        self._arg = {
            "user": list(selectors.get("message.user", ())),
            "timestamp": list(selectors.get("message.timestamp", ())),
            "content": list(selectors.get("message.content", ())),
        }

    async def extract_single_message(self, element: Any) -> Message | None:
        try:
            payload = await element.evaluate(EXTRACT_MESSAGE_JS, self._arg)
        except Exception as exc:
            raise ExtractionError(f"Could not evaluate extraction snippet: {exc}") from exc
        return message_from_payload(payload)
