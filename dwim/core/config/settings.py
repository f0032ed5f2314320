"""
Settings
========

• Every knob dwim reads at run-time, resolved once per process.
• Resolution order (first hit wins):
      1. explicit kwargs          Settings(ledger_path=…)
      2. environment variables    DWIM_LEDGER, DWIM_TIMEOUT, …
      3. YAML file                <home>/config.yaml
      4. built-in defaults
• ``home`` itself comes from kwargs → DWIM_HOME → ~/.config/dwim; it is
  the user-level scope root.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml

log = logging.getLogger(__name__)


def _path(value: Any) -> Path:
    return Path(str(value)).expanduser()


def _optional_path(value: Any) -> Optional[Path]:
    return _path(value) if value not in (None, "") else None


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


class Settings:
    CONFIG_FILE  = "config.yaml"
    DEFAULT_HOME = "~/.config/dwim"

    #   key                      env var                         caster
    FIELDS: Dict[str, tuple[str, Callable[[Any], Any]]] = {
        "state_dir":              ("DWIM_STATE_DIR",              _path),
        "ledger_path":            ("DWIM_LEDGER",                 _path),
        "user_commands":          ("DWIM_USER_COMMANDS",          _path),
        "shared_commands":        ("DWIM_SHARED_COMMANDS",        _optional_path),
        "interpretation_timeout": ("DWIM_TIMEOUT",                float),
        "clarification_ttl":      ("DWIM_CLARIFY_TTL",            float),
        "promote_min_frequency":  ("DWIM_PROMOTE_MIN_FREQUENCY",  int),
        "promote_min_stability":  ("DWIM_PROMOTE_MIN_STABILITY",  float),
        "interpreter":            ("DWIM_INTERPRETER",            _optional_str),
        "model":                  ("DWIM_MODEL",                  _optional_str),
    }

    # --------------------------------------------------------------------- init
    def __init__(self, home: str | Path | None = None, **overrides: Any) -> None:
        unknown = set(overrides) - set(self.FIELDS)
        if unknown:
            raise TypeError(f"unknown settings: {', '.join(sorted(unknown))}")

        self.home: Path = _path(home or os.getenv("DWIM_HOME") or self.DEFAULT_HOME)
        self._file: Dict[str, Any] = self._load_file()

        defaults = self._defaults()
        for key, (env, cast) in self.FIELDS.items():
            if key in overrides:
                raw = overrides[key]
            elif os.getenv(env) not in (None, ""):
                raw = os.getenv(env)
            elif key in self._file:
                raw = self._file[key]
            else:
                raw = defaults[key]
            setattr(self, key, cast(raw) if raw is not None else None)

        # the ledger follows state_dir unless pinned explicitly
        if not self._is_pinned("ledger_path", overrides):
            self.ledger_path = self.state_dir / "ledger.jsonl"

    # ---------------------------------------------------------------- derived
    @property
    def clarification_dir(self) -> Path:
        return self.state_dir / "clarifications"

    @property
    def config_path(self) -> Path:
        return self.home / self.CONFIG_FILE

    # ---------------------------------------------------------------- helpers
    def _defaults(self) -> Dict[str, Any]:
        return {
            "state_dir":              self.home / "state",
            "ledger_path":            self.home / "state" / "ledger.jsonl",
            "user_commands":          self.home / "commands",
            "shared_commands":        None,
            "interpretation_timeout": 30.0,
            "clarification_ttl":      86400.0,
            "promote_min_frequency":  10,
            "promote_min_stability":  0.9,
            "interpreter":            None,
            "model":                  None,
        }

    def _is_pinned(self, key: str, overrides: Dict[str, Any]) -> bool:
        env, _ = self.FIELDS[key]
        return key in overrides or os.getenv(env) not in (None, "") or key in self._file

    def _load_file(self) -> Dict[str, Any]:
        path = self.config_path
        if not path.exists():
            return {}
        try:
            with open(path, "r") as fp:
                data = yaml.safe_load(fp) or {}
        except (OSError, yaml.YAMLError) as exc:
            log.warning("Ignoring unreadable config %s (%s)", path, exc)
            return {}
        if not isinstance(data, dict):
            log.warning("Ignoring config %s: top level is not a mapping", path)
            return {}
        return {k: v for k, v in data.items() if k in self.FIELDS}

    def as_dict(self) -> Dict[str, Any]:
        out = {"home": str(self.home)}
        for key in self.FIELDS:
            val = getattr(self, key)
            out[key] = str(val) if isinstance(val, Path) else val
        return out

    # ---------------------------------------------------------------- repr
    def __repr__(self) -> str:
        return f"<Settings home={self.home}>"
