# grit_llm: LLM-backed drafting of issues and comments
#
# Providers: Anthropic Messages API and a local Ollama server. Both are called
# with requests, synchronously, from inside TUI commands.

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

import requests

from grit_config import Config, LLMConfig

logger = logging.getLogger('grit')

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
OLLAMA_URL = "http://localhost:11434"

ISSUE_SYSTEM_PROMPT = """You are a GitHub issue generator that creates well-structured issues.

{title}

{body}

{labels}

Respond with ONLY valid JSON:
{{
  "title": "Issue title",
  "body": "Markdown formatted body",
  "labels": []
}}"""

COMMENT_SYSTEM_PROMPT = (
    "You are helping write a GitHub issue comment. Write a clear, professional comment "
    "based on the user's intent. Respond with ONLY the comment text, no JSON wrapping."
)


class LLMError(RuntimeError):
    pass


@dataclass
class IssueRequest:
    user_prompt: str = ""
    title_hint: str = ""
    description_hint: str = ""
    repo_context: str = ""
    issue_prefix: str = ""
    allowed_labels: List[str] = field(default_factory=list)
    generate_title: bool = True
    generate_body: bool = True
    suggest_labels: bool = False


@dataclass
class GeneratedIssue:
    title: str
    body: str = ""
    labels: List[str] = field(default_factory=list)


@dataclass
class IssueInput:
    """What the user typed into the create form."""
    title: str = ""
    prompt: str = ""
    labels: List[str] = field(default_factory=list)
    assignees: List[str] = field(default_factory=list)


# -----------------------------
# Prompt building / parsing
# -----------------------------
def build_issue_prompts(req: IssueRequest):
    if req.title_hint:
        title_instruction = f"Use this as the title (keep it concise, under 80 chars): {req.title_hint}"
    elif req.generate_title:
        title_instruction = "Generate a clear, concise title (under 80 characters)"
    else:
        title_instruction = ""

    if req.description_hint:
        body_instruction = (
            "Expand and structure the following into a well-formatted GitHub issue body:\n"
            f'"{req.description_hint}"\n\n'
            "Include relevant sections such as:\n"
            "- Description (what needs to be done)\n"
            "- Acceptance Criteria (if applicable)\n"
            "- Technical Notes (if applicable)\n\n"
            "Use markdown formatting."
        )
    elif req.user_prompt:
        body_instruction = (
            "Generate a well-structured GitHub issue body with:\n"
            "- Description\n- Acceptance Criteria (if applicable)\n- Technical Notes (if applicable)\n\n"
            "Use markdown formatting."
        )
    else:
        body_instruction = "Generate a brief issue body based on the title."

    label_instruction = "Set labels to an empty array []."
    if req.suggest_labels and req.allowed_labels:
        label_instruction = f"Suggest labels ONLY from: {', '.join(req.allowed_labels)}. If none fit, use empty array."

    system = ISSUE_SYSTEM_PROMPT.format(title=title_instruction, body=body_instruction, labels=label_instruction)
    user = req.user_prompt or req.description_hint or req.title_hint or "Generate a GitHub issue."
    if req.repo_context:
        user = f"Repository: {req.repo_context}\n\n{user}"
    return system, user


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def _extract_field(text: str, name: str) -> str:
    m = re.search(r'"%s"\s*:\s*"' % re.escape(name), text)
    if not m:
        return ""
    out: List[str] = []
    escaped = False
    for ch in text[m.end():]:
        if escaped:
            out.append({'n': '\n', 't': '\t', 'r': '\r'}.get(ch, ch))
            escaped = False
            continue
        if ch == '\\':
            escaped = True
            continue
        if ch == '"':
            return "".join(out).strip()
        out.append(ch)
    return ""


def parse_generated_issue(text: str) -> GeneratedIssue:
    """Parse a model reply into a GeneratedIssue.

    Strict JSON is tried first (code fences stripped, surrounding prose cut at
    the outermost braces); models that emit almost-JSON fall back to pulling
    the title/body/labels fields out with regexes.
    """
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start != -1 and end > start:
        try:
            data = json.loads(cleaned[start:end + 1])
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("title"):
            labels = data.get("labels") or []
            return GeneratedIssue(
                title=str(data.get("title") or "").strip(),
                body=str(data.get("body") or "").strip(),
                labels=[str(l) for l in labels if str(l).strip()] if isinstance(labels, list) else [],
            )
    title = _extract_field(cleaned, "title")
    if not title:
        raise LLMError(f"could not extract title from response: {text[:200]}")
    labels: List[str] = []
    m = re.search(r'"labels"\s*:\s*\[([^\]]*)\]', cleaned)
    if m:
        labels = [l for l in re.findall(r'"([^"]*)"', m.group(1)) if l]
    return GeneratedIssue(title=title, body=_extract_field(cleaned, "body"), labels=labels)


def filter_labels(suggested: List[str], allowed: List[str]) -> List[str]:
    allowed_set = {l.lower() for l in allowed}
    return [l for l in suggested if l.lower() in allowed_set]


def _finish_issue(issue: GeneratedIssue, req: IssueRequest) -> GeneratedIssue:
    if req.issue_prefix and issue.title and not issue.title.startswith(req.issue_prefix):
        issue.title = req.issue_prefix + issue.title
    if not req.suggest_labels:
        issue.labels = []
    elif req.allowed_labels:
        issue.labels = filter_labels(issue.labels, req.allowed_labels)
    return issue


# -----------------------------
# Providers
# -----------------------------
class AnthropicClient:
    def __init__(self, api_key: str, model: str, session: Optional[requests.Session] = None,
                 timeout: float = 60, url: str = ANTHROPIC_URL):
        self.api_key = api_key
        self.model = model
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self.url = url

    def _call(self, system: str, user: str) -> str:
        payload = {
            "model": self.model,
            "max_tokens": 1024,
            "system": system,
            "messages": [{"role": "user", "content": user}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        try:
            r = self.session.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise LLMError(f"anthropic request failed: {exc}") from exc
        try:
            data = r.json()
        except ValueError:
            raise LLMError(f"anthropic api error ({r.status_code}): {r.text[:200]}")
        err = data.get("error") if isinstance(data, dict) else None
        if err:
            raise LLMError(f"anthropic api error: {err.get('message') if isinstance(err, dict) else err}")
        if r.status_code >= 300:
            raise LLMError(f"anthropic api error ({r.status_code}): {r.text[:200]}")
        content = data.get("content") or []
        texts = [c.get("text", "") for c in content if isinstance(c, dict) and c.get("type") == "text"]
        if not texts:
            raise LLMError("empty response from anthropic")
        return texts[0]

    def generate_issue(self, req: IssueRequest) -> GeneratedIssue:
        system, user = build_issue_prompts(req)
        return _finish_issue(parse_generated_issue(self._call(system, user)), req)

    def generate_comment(self, issue_context: str, user_prompt: str) -> str:
        user = f"Issue context:\n{issue_context}\n\nWrite a comment that: {user_prompt}"
        return self._call(COMMENT_SYSTEM_PROMPT, user).strip()


class OllamaClient:
    def __init__(self, base_url: str, model: str, session: Optional[requests.Session] = None, timeout: float = 120):
        self.base_url = (base_url or OLLAMA_URL).rstrip("/")
        self.model = model
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout

    def _call(self, system: str, prompt: str) -> str:
        payload = {"model": self.model, "prompt": prompt, "system": system, "stream": False}
        try:
            r = self.session.post(f"{self.base_url}/api/generate", json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise LLMError(f"cannot reach Ollama at {self.base_url}: {exc}") from exc
        try:
            data = r.json()
        except ValueError:
            raise LLMError(f"ollama error ({r.status_code}): {r.text[:200]}")
        if not isinstance(data, dict):
            raise LLMError(f"ollama error: unexpected response {r.text[:200]}")
        if data.get("error"):
            raise LLMError(f"ollama error: {data['error']}")
        return data.get("response") or ""

    def generate_issue(self, req: IssueRequest) -> GeneratedIssue:
        system, user = build_issue_prompts(req)
        return _finish_issue(parse_generated_issue(self._call(system, user)), req)

    def generate_comment(self, issue_context: str, user_prompt: str) -> str:
        system = "Write a GitHub issue comment based on the user's intent. Respond with ONLY the comment text."
        user = f"Issue context:\n{issue_context}\n\nWrite a comment that: {user_prompt}"
        return self._call(system, user).strip()


def build_llm_client(cfg: LLMConfig, api_key: Optional[str]):
    """Return a client for ``cfg.provider`` or None when LLM features are off."""
    provider = (cfg.provider or "none").lower()
    if provider == "none":
        return None
    if provider == "anthropic":
        if not api_key:
            raise LLMError("anthropic requires an API key; set GRIT_LLM_KEY")
        return AnthropicClient(api_key, cfg.model)
    if provider == "ollama":
        return OllamaClient(cfg.base_url, cfg.model)
    raise LLMError(f"unknown LLM provider: {cfg.provider}")


# -----------------------------
# Drafting
# -----------------------------
def draft_issue(llm, cfg: Config, data: IssueInput, enhance: bool) -> GeneratedIssue:
    """Turn form input into an issue draft.

    Without ``enhance`` (or without an LLM client) the literal fields pass
    through: title, prompt as body, labels as typed. Otherwise the model writes
    the draft and the user's own title and labels win over its suggestions.
    """
    if not enhance or llm is None:
        return GeneratedIssue(title=data.title, body=data.prompt, labels=list(data.labels))
    req = IssueRequest(
        user_prompt=data.prompt,
        title_hint=data.title,
        description_hint=data.prompt,
        repo_context=cfg.project.full_name,
        issue_prefix=cfg.project.issue_prefix,
        allowed_labels=list(cfg.project.labels),
        generate_title=not data.title,
        generate_body=True,
        suggest_labels=not data.labels and bool(cfg.project.labels),
    )
    issue = llm.generate_issue(req)
    if data.title:
        issue.title = data.title
    if data.labels:
        issue.labels = list(data.labels)
    return issue


def issue_context(title: str, body: str) -> str:
    return f"Title: {title}\n\nBody:\n{body}"
