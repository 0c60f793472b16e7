import json
import logging
from typing import Any, Dict, Optional, Sequence

from llm_client import LLMClient, PromptSpec
from prompts.masterprompts import MasterPrompt, get_prompt
from schemas import ConversationTurn, load_json_object

_LOGGER = logging.getLogger(__name__)


def json_log(logger: logging.Logger, event: str, payload: Dict[str, Any]) -> None:
    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True, default=str)
    except (TypeError, ValueError):
        fallback = {
            "event": event,
            "error": "serialization_failed",
            "payload_repr": repr(payload),
        }
        message = json.dumps(fallback, ensure_ascii=False, sort_keys=True)
    logger.info(message)


def format_transcript(
    history: Sequence[ConversationTurn],
    *,
    user_label: str = "user",
    character_label: str = "character",
) -> str:
    lines = []
    for turn in history:
        speaker = user_label if turn.role == "user" else character_label
        lines.append(f"{speaker}: {turn.message}")
    return "\n".join(lines)


class BaseEngine:
    """Shared plumbing for engines backed by the generative model.

    Subclasses render a prompt, call :meth:`request_json` and turn the decoded
    object into their own result type. ``request_json`` raises on transport or
    decoding problems; each public operation decides its own fallback.
    """

    def __init__(self, llm_client: LLMClient) -> None:
        self.llm = llm_client

    def build_spec(
        self,
        prompt: MasterPrompt,
        fields: Dict[str, Any],
        *,
        user_id: Optional[str] = None,
        user_message: Optional[str] = None,
    ) -> PromptSpec:
        return PromptSpec(
            prompt_id=prompt.id,
            prompt_version=prompt.prompt_version,
            system=prompt.render(**fields),
            user=user_message or prompt.user_message,
            temperature=prompt.temperature,
            max_tokens=prompt.max_tokens,
            model_role=prompt.model_role,
            user_id=user_id,
        )

    def request_json(
        self,
        prompt_id: str,
        fields: Dict[str, Any],
        *,
        user_id: Optional[str] = None,
        user_message: Optional[str] = None,
    ) -> Dict[str, Any]:
        prompt = get_prompt(prompt_id)
        spec = self.build_spec(prompt, fields, user_id=user_id, user_message=user_message)
        raw = self.llm.submit(spec)
        _LOGGER.debug("%s reply (%d chars)", prompt_id, len(raw or ""))
        return load_json_object(raw)
