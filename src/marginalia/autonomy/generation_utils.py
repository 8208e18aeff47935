from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

import requests

from .config import PROVIDERS, Config
from .drafting import normalize_str


ANTHROPIC_VERSION = "2023-06-01"

logger = logging.getLogger("marginalia.autonomy")


def _estimate_tokens_from_text(value: Any) -> int:
    text = normalize_str(value)
    if not text:
        return 0
    return max(1, len(text) // 4)


def has_generation_provider(cfg: Config, provider: str) -> bool:
    if provider == "anthropic":
        return bool(cfg.anthropic_api_key)
    if provider == "openai":
        return bool(cfg.openai_api_key)
    if provider == "google":
        return bool(cfg.google_api_key)
    return False


def _post_json(url: str, headers: Dict[str, str], payload: Dict[str, Any], label: str) -> Dict[str, Any]:
    try:
        resp = requests.post(url, headers=headers, data=json.dumps(payload), timeout=120)
    except requests.exceptions.Timeout as e:
        raise RuntimeError(f"Timed out while waiting for {label}.") from e
    if resp.status_code >= 400:
        raise RuntimeError(f"{label} error {resp.status_code}: {resp.text}")
    return resp.json()


def call_anthropic(cfg: Config, system: str, prompt: str, max_tokens: int) -> str:
    if not cfg.anthropic_api_key:
        raise RuntimeError("ANTHROPIC_API_KEY not set")

    headers = {
        "x-api-key": cfg.anthropic_api_key,
        "anthropic-version": ANTHROPIC_VERSION,
        "Content-Type": "application/json",
    }
    payload: Dict[str, Any] = {
        "model": cfg.anthropic_model,
        "max_tokens": max_tokens,
        "temperature": cfg.llm_temperature,
        "messages": [{"role": "user", "content": prompt}],
    }
    if system:
        payload["system"] = system

    data = _post_json(f"{cfg.anthropic_base_url}/messages", headers, payload, "Anthropic")
    chunks: List[str] = []
    for block in data.get("content") or []:
        if isinstance(block, dict) and block.get("type") == "text":
            chunks.append(normalize_str(block.get("text")))
    return "".join(chunks)


def call_openai(cfg: Config, system: str, prompt: str, max_tokens: int) -> str:
    if not cfg.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY not set")

    headers = {
        "Authorization": f"Bearer {cfg.openai_api_key}",
        "Content-Type": "application/json",
    }
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})
    payload = {
        "model": cfg.openai_model,
        "messages": messages,
        "temperature": cfg.llm_temperature,
        "max_tokens": max_tokens,
    }

    data = _post_json(f"{cfg.openai_base_url}/chat/completions", headers, payload, "OpenAI")
    choices = data.get("choices") or []
    if not choices:
        raise RuntimeError("OpenAI response missing choices")
    return normalize_str((choices[0].get("message") or {}).get("content"))


def call_google(cfg: Config, system: str, prompt: str, max_tokens: int) -> str:
    if not cfg.google_api_key:
        raise RuntimeError("GOOGLE_API_KEY not set")

    url = f"{cfg.google_base_url}/v1beta/models/{cfg.google_model}:generateContent"
    headers = {
        "x-goog-api-key": cfg.google_api_key,
        "Content-Type": "application/json",
    }
    payload: Dict[str, Any] = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": {
            "temperature": cfg.llm_temperature,
            "maxOutputTokens": max_tokens,
        },
    }
    if system:
        payload["systemInstruction"] = {"parts": [{"text": system}]}

    data = _post_json(url, headers, payload, "Gemini")
    candidates = data.get("candidates") or []
    if not candidates:
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise RuntimeError(f"Gemini blocked response: {block_reason}")
        raise RuntimeError("Gemini returned no candidates")
    parts = ((candidates[0].get("content") or {}).get("parts")) or []
    return "".join(normalize_str(p.get("text")) for p in parts if isinstance(p, dict))


_CALLERS = {
    "anthropic": call_anthropic,
    "openai": call_openai,
    "google": call_google,
}


def generate_text(cfg: Config, provider: str, system: str, prompt: str, max_tokens: int) -> str:
    if provider not in PROVIDERS or provider not in _CALLERS:
        raise RuntimeError(f"Unknown LLM provider: {provider or '(empty)'}")

    logger.info(
        "LLM request provider=%s prompt_chars=%s system_chars=%s prompt_tokens_est=%s max_tokens=%s",
        provider,
        len(prompt),
        len(system),
        _estimate_tokens_from_text(system) + _estimate_tokens_from_text(prompt),
        max_tokens,
    )
    text = _CALLERS[provider](cfg, system, prompt, max_tokens)
    logger.info(
        "LLM response provider=%s chars=%s completion_tokens_est=%s",
        provider,
        len(text),
        _estimate_tokens_from_text(text),
    )
    return text
