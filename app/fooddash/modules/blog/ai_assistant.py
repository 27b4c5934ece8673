from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

ACTIONS = ("optimize_seo", "translate", "improve_readability", "suggest_title")


class AIAssistantError(RuntimeError):
    pass


def build_prompts(action: str, *, content: str | None, title: str | None, language: str | None) -> tuple[str, str]:
    """Returns (system prompt, user prompt). Unknown actions raise ValueError."""
    content = content or ""
    if action == "optimize_seo":
        return (
            "You are an SEO expert. Write an optimised meta_title (max 60 chars) and meta_description "
            '(max 160 chars). Reply ONLY with JSON: {"meta_title": "...", "meta_description": "..."}',
            f"Title: {title or ''}\nContent: {content[:1000]}",
        )
    if action == "translate":
        target = "English" if (language or "fr") == "fr" else "French"
        return (
            f"You are a professional translator. Translate the text into {target}, keeping the Markdown formatting.",
            content,
        )
    if action == "improve_readability":
        return (
            "You are an expert editor. Improve the readability of the text while keeping its meaning and "
            "Markdown formatting. Make it clearer and more engaging.",
            content,
        )
    if action == "suggest_title":
        return (
            "You are a copywriting expert. Suggest ONE catchy SEO title (max 60 chars). "
            "Reply with the title only, without quotes or explanations.",
            f"Content: {content[:500]}",
        )
    raise ValueError(f"Unknown action. Must be one of: {', '.join(ACTIONS)}")


def parse_completion(data: dict[str, Any]) -> str:
    choices = data.get("choices") or []
    if not choices:
        return ""
    return ((choices[0] or {}).get("message") or {}).get("content") or ""


@dataclass(frozen=True)
class AIAssistantClient:
    """Chat-completions gateway used by the blog editor."""

    api_key: str
    url: str
    model: str
    timeout_seconds: int = 60

    def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        req = urllib.request.Request(self.url, data=json.dumps(body).encode("utf-8"), method="POST")
        req.add_header("Authorization", f"Bearer {self.api_key}")
        req.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            logger.warning("AI gateway request failed status=%s", e.code)
            raise AIAssistantError(f"HTTP {e.code} from AI gateway.") from e
        except (urllib.error.URLError, TimeoutError) as e:
            logger.warning("AI gateway unreachable: %s", e)
            raise AIAssistantError("AI gateway unreachable.") from e
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise AIAssistantError("Invalid JSON from AI gateway.") from e

    def run(self, action: str, *, content: str | None = None, title: str | None = None, language: str | None = None) -> str:
        system_prompt, user_prompt = build_prompts(action, content=content, title=title, language=language)
        if not self.api_key:
            raise AIAssistantError("AI assistant is not configured.")
        data = self._post(
            {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            }
        )
        return parse_completion(data)


def ai_client_from_config(config: dict) -> AIAssistantClient:
    return AIAssistantClient(
        api_key=(config.get("AI_GATEWAY_API_KEY") or "").strip(),
        url=(config.get("AI_GATEWAY_URL") or "").strip(),
        model=(config.get("AI_GATEWAY_MODEL") or "").strip(),
    )
