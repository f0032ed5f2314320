"""
dwim.ai.agent
-------------
Thin wrapper around the OpenAI chat completions API, used as the default
interpretation backend.

Key points
~~~~~~~~~~
• Singleton: every call to Agent() returns the same object – the HTTP
  connection pool is shared for the life of the process.
• One attempt per request.  The client is built with ``max_retries=0``
  and an explicit ``timeout``; a timeout surfaces as
  InterpretationTimeout, any other API error as InterpretationFailure.
  Retrying is the caller's business, and the dispatcher never does.
• Session isolation:  Agent.new_session() clears message history so
  different callers do not bleed context into one another.

Environment / config resolution order
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
1. Explicit kwargs when instantiating Agent(model=…, api_key=…)
2. Environment variables
      OPENAI_API_KEY
      DWIM_MODEL / OPENAI_MODEL
3. JSON file “.gpt-conf” sitting next to this agent.py
      { "API_KEY": "...", "MODEL": "gpt-4o-mini" }
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from openai import OpenAI
from openai import (
    RateLimitError,
    APIConnectionError,
    APITimeoutError,
    APIStatusError,
)

from dwim.core.exceptions import (
    InterpretationFailure,
    InterpretationTimeout,
    StructuredParseError,
)

log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())


# ════════════════════════════════════════════════════════════════════════
#                               SINGLETON
# ════════════════════════════════════════════════════════════════════════
class _SingletonMeta(type):
    _instance: "Agent | None" = None

    def __call__(cls, *args, **kwargs) -> "Agent":  # type: ignore
        if cls._instance is None:
            cls._instance = super().__call__(*args, **kwargs)
        return cls._instance


# ════════════════════════════════════════════════════════════════════════
#                                AGENT
# ════════════════════════════════════════════════════════════════════════
class Agent(metaclass=_SingletonMeta):
    # ------------------------------------------------------------------ init
    def __init__(
        self,
        *,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        conf_path: str = ".gpt-conf",
    ) -> None:
        if getattr(self, "_init_done", False):       # second call – ignore
            return

        self._load_config(conf_path, model, api_key)
        self.timeout = float(timeout)
        self.client = OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        self._messages: List[Dict[str, str]] = []
        self._init_done = True
        log.debug("OpenAI Agent initialised with model %s", self.model)

    # ---------------------------------------------------------------- public
    # ---- session control
    def new_session(self) -> None:
        """Clear the running message chain so the next `ask` starts fresh."""
        self._messages.clear()

    # ---- main API
    def ask(
        self,
        prompt: str,
        *,
        system: str | None = None,
        structured: bool = False,
        temperature: float = 0.0,
        keep_session: bool = False,
    ) -> Any:
        """
        Send one prompt and return the answer.

        • ``structured=True`` parses the answer as JSON, then YAML (a fenced
          block is preferred when present) and returns the python object.
        • Otherwise the raw text is returned.
        """
        try:
            if system and not self._messages:
                self._messages.append({"role": "system", "content": system})
            answer = self._make_request(prompt, temperature=temperature)
            return self.parse_structured(answer) if structured else answer
        finally:
            if not keep_session:
                self.new_session()

    # ---------------------------------------------------------------- internals
    # ---- configuration
    def _load_config(self, conf_path: str, model: str | None, api_key: str | None):
        home = Path(__file__).resolve().parent
        conf_file = home / conf_path
        conf_json = {}
        if conf_file.exists():
            with open(conf_file, "r") as fp:
                conf_json = json.load(fp)

        self.model = (
            model
            or os.getenv("DWIM_MODEL")
            or os.getenv("OPENAI_MODEL")
            or conf_json.get("MODEL")
            or "gpt-4o-mini"
        )
        self.api_key = api_key or os.getenv("OPENAI_API_KEY") or conf_json.get("API_KEY")
        if not self.api_key:
            raise InterpretationFailure("OpenAI API key not provided (env or .gpt-conf)")

    # ---- chat plumbing
    def _make_request(self, prompt: str, *, temperature: float = 0.0) -> str:
        log.info("[Agent] Prompting model %s (len=%d)", self.model, len(prompt))
        self._messages.append({"role": "user", "content": prompt})

        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=self._messages,
                temperature=temperature,
                timeout=self.timeout,
            )
        except APITimeoutError as exc:
            log.warning("OpenAI request timed out after %.1fs", self.timeout)
            raise InterpretationTimeout(f"no answer within {self.timeout:.0f}s") from exc
        except (RateLimitError, APIConnectionError, APIStatusError) as exc:
            log.warning("OpenAI error (%s): %s", exc.__class__.__name__, exc)
            raise InterpretationFailure(f"{exc.__class__.__name__}: {exc}") from exc

        msg = resp.choices[-1].message
        content = msg.content or ""
        self._messages.append({"role": msg.role, "content": content})
        return content

    # ---- structured answer helpers
    @classmethod
    def parse_structured(cls, text: str) -> Any:
        try:
            raw = cls._extract_code_block(text)
        except StructuredParseError:
            raw = text.strip()

        # try JSON, then YAML, then YAML with auto-quoting
        for loader in (json.loads, yaml.safe_load, lambda t: yaml.safe_load(cls._auto_quote_scalars(t))):
            try:
                data = loader(raw)
            except Exception:  # noqa: BLE001
                continue
            if isinstance(data, (dict, list)):
                return data

        log.error("Structured parse failed:\n%s", raw)
        raise StructuredParseError("Could not parse model response as YAML/JSON")

    # ---- misc helpers
    @staticmethod
    def _extract_code_block(text: str, langs: str = "yaml|json") -> str:
        m = re.search(rf"```(?:{langs})?\n(.*?)\n```", text, re.DOTALL)
        if not m:
            raise StructuredParseError("No fenced YAML/JSON block found")
        return m.group(1).strip()

    @staticmethod
    def _auto_quote_scalars(block: str) -> str:
        block = re.sub(r"\[([^\]]*@[^\]]*)\]", lambda m: f'["{m.group(1)}"]', block)
        block = re.sub(r":\s*(@[^\s#]+)", r': "\1"', block)
        return block
