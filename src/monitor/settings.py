"""Settings — load ``config/monitors.yaml`` into typed option sets.

Each classifier receives its own ``ClassifierConfig`` at construction; the
aggregator, dispatcher, registry and engine get theirs the same way.  All
validation happens here, so a bad value is reported once at start-up as a
``ConfigError`` instead of surfacing mid-stream.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from src.contracts.enums import AlertState, ClassifierKind, Severity
from src.contracts.errors import ConfigError
from src.shared.config_loader import load_yaml

log = logging.getLogger(__name__)

_SINK_TYPES = {"log", "jsonl", "webhook"}


@dataclass(slots=True)
class ClassifierConfig:
    """Option set enumerated at classifier construction (not all apply to all)."""

    enabled: bool = True
    threshold_min_peers: int = 1
    fade_off_seconds: int | None = None     # None = aggregator default
    check_uncovered: bool = False
    check_disappearing: bool = False
    severity: Severity | None = None
    detect_loops: bool = True
    window_seconds: int = 300               # visibility: look-back for the peak peer count
    min_drop_peers: int = 2                 # visibility: peers lost from that peak
    rules: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class AggregatorConfig:
    fade_off_seconds: int = 60
    close_grace_seconds: int = 300
    max_evidence: int = 20
    notify_states: frozenset[AlertState] = frozenset(AlertState)


@dataclass(slots=True)
class DispatchConfig:
    max_attempts: int = 5
    base_delay_sec: float = 1.0
    max_delay_sec: float = 30.0
    timeout_sec: float = 5.0
    sinks: list[dict[str, Any]] = field(default_factory=lambda: [{"type": "log"}])


@dataclass(slots=True)
class RegistryConfig:
    prefixes: str = "config/prefixes.yaml"
    roas: str | None = None
    roas_url: str | None = None
    refresh_interval_sec: float = 900.0


@dataclass(slots=True)
class EngineConfig:
    monitored_only: bool = True
    skip_bogons: bool = True
    clock: str = "event"                    # event | wall
    status_interval_sec: float = 10.0


@dataclass(slots=True)
class MonitorSettings:
    monitors: dict[str, ClassifierConfig] = field(default_factory=dict)
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)

    def visibility_window(self) -> float:
        vis = self.monitors.get("visibility")
        return float(vis.window_seconds) if vis is not None else 300.0

    def fade_off_for(self, classifier: str) -> int:
        cfg = self.monitors.get(classifier)
        if cfg is not None and cfg.fade_off_seconds is not None:
            return cfg.fade_off_seconds
        return self.aggregator.fade_off_seconds


# ═══════════════════════════════════════════════════════════════════════════
#  Loading
# ═══════════════════════════════════════════════════════════════════════════


def load_settings(config_dir: str | Path) -> MonitorSettings:
    """Load ``monitors.yaml`` from *config_dir*.

    Relative file paths inside the ``registry`` block are resolved against
    *config_dir*'s parent (the repository root in the default layout).
    """
    path = Path(config_dir) / "monitors.yaml"
    cfg = load_yaml(path)
    settings = settings_from_dict(cfg, base_dir=Path(config_dir).parent)
    log.info(
        "Loaded settings from %s: monitors=%s, sinks=%s",
        path,
        ", ".join(n for n, c in settings.monitors.items() if c.enabled),
        ", ".join(s["type"] for s in settings.dispatch.sinks),
    )
    return settings


def settings_from_dict(cfg: dict[str, Any], base_dir: Path | None = None) -> MonitorSettings:
    """Build MonitorSettings from a parsed YAML dict; raises ConfigError."""
    settings = MonitorSettings()

    for name, raw in (cfg.get("monitors") or {}).items():
        if name not in {k.value for k in ClassifierKind}:
            raise ConfigError(f"unknown monitor '{name}'")
        settings.monitors[name] = _classifier_config(name, raw or {})

    agg = cfg.get("aggregator") or {}
    settings.aggregator = AggregatorConfig(
        fade_off_seconds=_positive_int(agg, "fade_off_seconds", 60),
        close_grace_seconds=_positive_int(agg, "close_grace_seconds", 300),
        max_evidence=_positive_int(agg, "max_evidence", 20),
        notify_states=_states(agg.get("notify_states")),
    )

    disp = cfg.get("dispatch") or {}
    sinks = disp.get("sinks") or [{"type": "log"}]
    for s in sinks:
        if s.get("type") not in _SINK_TYPES:
            raise ConfigError(f"unknown sink type '{s.get('type')}'")
        if s["type"] == "webhook" and not s.get("url"):
            raise ConfigError("webhook sink needs a url")
    settings.dispatch = DispatchConfig(
        max_attempts=_positive_int(disp, "max_attempts", 5),
        base_delay_sec=float(disp.get("base_delay_sec", 1.0)),
        max_delay_sec=float(disp.get("max_delay_sec", 30.0)),
        timeout_sec=float(disp.get("timeout_sec", 5.0)),
        sinks=sinks,
    )

    reg = cfg.get("registry") or {}
    settings.registry = RegistryConfig(
        prefixes=_resolve(reg.get("prefixes", "config/prefixes.yaml"), base_dir),
        roas=_resolve(reg["roas"], base_dir) if reg.get("roas") else None,
        roas_url=reg.get("roas_url") or None,
        refresh_interval_sec=float(reg.get("refresh_interval_sec", 900)),
    )

    eng = cfg.get("engine") or {}
    clock = eng.get("clock", "event")
    if clock not in ("event", "wall"):
        raise ConfigError(f"engine.clock must be 'event' or 'wall', got '{clock}'")
    settings.engine = EngineConfig(
        monitored_only=bool(eng.get("monitored_only", True)),
        skip_bogons=bool(eng.get("skip_bogons", True)),
        clock=clock,
        status_interval_sec=float(eng.get("status_interval_sec", 10)),
    )
    return settings


def _classifier_config(name: str, raw: dict[str, Any]) -> ClassifierConfig:
    sev = raw.get("severity")
    try:
        severity = Severity(sev) if sev else None
    except ValueError as exc:
        raise ConfigError(f"monitors.{name}.severity: {exc}") from exc
    fade = raw.get("fade_off_seconds")
    return ClassifierConfig(
        enabled=bool(raw.get("enabled", True)),
        threshold_min_peers=_positive_int(raw, "threshold_min_peers", 1),
        fade_off_seconds=int(fade) if fade is not None else None,
        check_uncovered=bool(raw.get("check_uncovered", False)),
        check_disappearing=bool(raw.get("check_disappearing", False)),
        severity=severity,
        detect_loops=bool(raw.get("detect_loops", True)),
        window_seconds=_positive_int(raw, "window_seconds", 300),
        min_drop_peers=_positive_int(raw, "min_drop_peers", 2),
        rules=list(raw.get("rules") or []),
    )


def _positive_int(d: dict[str, Any], key: str, default: int) -> int:
    try:
        val = int(d.get(key, default))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key}: expected an integer, got {d.get(key)!r}") from exc
    if val < 1:
        raise ConfigError(f"{key}: must be >= 1, got {val}")
    return val


def _states(raw: list[str] | None) -> frozenset[AlertState]:
    if raw is None:
        return frozenset(AlertState)
    try:
        return frozenset(AlertState(s) for s in raw)
    except ValueError as exc:
        raise ConfigError(f"aggregator.notify_states: {exc}") from exc


def _resolve(path: str, base_dir: Path | None) -> str:
    p = Path(path)
    if p.is_absolute() or base_dir is None:
        return str(p)
    return str(base_dir / p)
