# service/scheduler.py
from __future__ import annotations

import logging
import os
import threading
import time as _time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from datetime import tzinfo as _dt_tzinfo
from typing import Any
from zoneinfo import ZoneInfo

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from . import config_schema, runner

LOG = logging.getLogger(__name__)

# Poll cycles are non-reentrant; a late trigger is dropped, not stacked.
JOB_DEFAULTS = {"coalesce": True, "max_instances": 1}


# ---- Internal structures ----------------------------------------------------


@dataclass(frozen=True, slots=True)
class JobSpec:
    id: str
    trigger: Any  # apscheduler.triggers.base.BaseTrigger
    module: str
    kwargs: dict[str, Any]
    send_email: bool | None
    timeout_sec: int | None
    max_instances: int
    coalesce: bool
    misfire_grace_time: int | None
    summary: str | None
    email_to: list[str] | None = None
    email_cc: list[str] | None = None
    email_bcc: list[str] | None = None
    subject: str | None = None


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """Thin handle over the running BackgroundScheduler for the CLI."""

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self._scheduler = scheduler
        self._stopped_evt = threading.Event()

    def stop(self) -> None:
        """Stop scheduling; cycles already in flight finish on their own."""
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            self._scheduler.shutdown(wait=False)
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        return self._stopped_evt.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return (job.id for job in self._scheduler.get_jobs())


# ---- Module API -------------------------------------------------------------


def build_scheduler(cfg: dict[str, Any]) -> BackgroundScheduler:
    """A configured, not yet started, scheduler with every valid job added."""
    tz = resolve_timezone(cfg)
    scheduler = BackgroundScheduler(
        timezone=tz,
        job_defaults=dict(JOB_DEFAULTS),
        executors={"default": ThreadPoolExecutor(_int_or(cfg.get("executor_workers"), 10))},
        jobstores={"default": MemoryJobStore()},
    )
    for spec in iter_job_specs(cfg, tz):
        _add_job(scheduler, spec)
    return scheduler


def start(config_path: str | None = None) -> SchedulerController:
    """Load configuration, schedule every job, start, and hand back a controller."""
    cfg = config_schema.load_config(config_path)
    scheduler = build_scheduler(cfg)
    scheduler.start()
    LOG.info("Scheduler started with %d job(s).", len(scheduler.get_jobs()))
    return SchedulerController(scheduler)


def iter_job_specs(cfg: dict[str, Any], tz) -> Iterable[JobSpec]:
    """JobSpecs for the config's jobs; a job with a bad trigger is logged and skipped."""
    for raw in cfg.get("jobs", []):
        try:
            yield make_job_spec(raw, tz)
        except (ValueError, KeyError):
            LOG.exception("Skipping job due to config error: %r", raw.get("id"))


def resolve_timezone(cfg: dict[str, Any]):
    """pytz zone for APScheduler 3.x: config 'timezone', then $TZ, then UTC."""
    tz_name = cfg.get("timezone") or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid tz '%s')", tz_name)
        return pytz.UTC


def preview_trigger(trigger, tz, count: int = 5, start: datetime | None = None) -> list[datetime]:
    """Next `count` fire times strictly after `start` (default: now in tz)."""
    now = start or datetime.now(tz=tz)
    if isinstance(trigger, DateTrigger):
        # one-shot: a seeded previous fire time would mean "already fired"
        return [trigger.run_date] if count > 0 and trigger.run_date > now else []
    prev = now
    times = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        times.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return times


def make_job_spec(raw: dict[str, Any], tz) -> JobSpec:
    """Normalized job dict (from config_schema.load_config) -> JobSpec with a live trigger."""
    jid = str(raw.get("id") or _require(raw, "module"))
    return JobSpec(
        id=jid,
        trigger=_build_trigger(_require(raw, "trigger"), tz),
        module=_require(raw, "module"),
        kwargs=dict(raw.get("kwargs") or {}),
        send_email=raw.get("send_email"),
        timeout_sec=_int_or(raw.get("timeout_sec"), None),
        max_instances=_int_or(raw.get("max_instances"), JOB_DEFAULTS["max_instances"]),
        coalesce=bool(raw.get("coalesce", JOB_DEFAULTS["coalesce"])),
        misfire_grace_time=_int_or(raw.get("misfire_grace_time"), None),
        summary=raw.get("summary"),
        email_to=raw.get("email_to"),
        email_cc=raw.get("email_cc"),
        email_bcc=raw.get("email_bcc"),
        subject=raw.get("subject"),
    )


# ---- Triggers ---------------------------------------------------------------


def _build_trigger(trig_def: dict[str, Any], tz) -> Any:
    """
    Build an APScheduler trigger from a dict with exactly one of:

      {"interval": 30}                                  # seconds
      {"interval": {weeks|days|hours|minutes|seconds, jitter?, start_date?, end_date?, timezone?}}
      {"cron": "*/15 * * * *"}                          # crontab, scheduler tz
      {"cron": {second?, minute?, hour?, day?, day_of_week?, month?, timezone?, ...}}
      {"date": ISO | epoch | {"run_at": ..., "timezone"?: ...}}

    A block's own 'timezone' wins over the scheduler tz; a naive date is
    interpreted in the scheduler tz.
    """
    if not isinstance(trig_def, dict):
        raise ValueError("trigger spec must be a dict")
    present = [k for k in ("interval", "cron", "date") if trig_def.get(k) is not None]
    if len(present) != 1:
        raise ValueError("exactly one of {'interval','cron','date'} must be provided")

    kind = present[0]
    default_tz = _tz(tz)
    if kind == "interval":
        return _interval_trigger(trig_def["interval"], default_tz)
    if kind == "cron":
        return _cron_trigger(trig_def["cron"], default_tz)
    return _date_trigger(trig_def["date"], default_tz)


def _tz(z) -> _dt_tzinfo | None:
    if not z:
        return None
    if isinstance(z, _dt_tzinfo):
        return z
    return ZoneInfo(str(z))


_INTERVAL_UNITS = ("weeks", "days", "hours", "minutes", "seconds")


def _interval_trigger(spec: Any, default_tz) -> IntervalTrigger:
    if isinstance(spec, (int, str)) and not isinstance(spec, bool):
        spec = {"seconds": spec}
    if not isinstance(spec, dict):
        raise ValueError("interval must be seconds or an object with time fields")

    unknown = set(spec) - {*_INTERVAL_UNITS, "jitter", "timezone", "start_date", "end_date"}
    if unknown:
        raise ValueError(f"interval has unknown field(s): {sorted(unknown)}")

    kwargs: dict[str, Any] = {}
    for name in (*_INTERVAL_UNITS, "jitter"):
        if name not in spec:
            continue
        try:
            v = int(spec[name])
        except (TypeError, ValueError) as err:
            raise ValueError(f"interval.{name} must be an integer") from err
        if v < 0:
            raise ValueError(f"interval.{name} must be >= 0")
        if v:
            kwargs[name] = v
    if not any(kwargs.get(u) for u in _INTERVAL_UNITS):
        raise ValueError("interval must be greater than 0 (provide at least one nonzero time field)")
    for name in ("start_date", "end_date"):
        if name in spec:
            kwargs[name] = spec[name]
    return IntervalTrigger(timezone=_tz(spec.get("timezone")) or default_tz, **kwargs)


_CRON_FIELDS = {"second", "minute", "hour", "day", "day_of_week", "month", "timezone", "start_date", "end_date", "jitter"}


def _cron_trigger(spec: Any, default_tz) -> CronTrigger:
    if isinstance(spec, str):
        fields = spec.split()
        if len(fields) != 5:
            raise ValueError(f"cron string must have 5 fields (got {len(fields)}): {spec!r}")
        return CronTrigger.from_crontab(spec, timezone=default_tz)
    if not isinstance(spec, dict):
        raise ValueError("cron must be a crontab string or an object")
    unknown = set(spec) - _CRON_FIELDS
    if unknown:
        raise ValueError(f"cron has unknown field(s): {sorted(unknown)}")
    return CronTrigger(
        second=spec.get("second", 0),
        minute=spec.get("minute", 0),
        hour=spec.get("hour"),
        day=spec.get("day"),
        day_of_week=spec.get("day_of_week"),
        month=spec.get("month"),
        start_date=spec.get("start_date"),
        end_date=spec.get("end_date"),
        jitter=spec.get("jitter"),
        timezone=_tz(spec.get("timezone")) or default_tz,
    )


def _date_trigger(spec: Any, default_tz) -> DateTrigger:
    if isinstance(spec, dict):
        run_at = spec.get("run_at")
        tzinfo = _tz(spec.get("timezone")) or default_tz
    else:
        run_at, tzinfo = spec, default_tz
    if run_at is None:
        raise ValueError("date trigger requires 'run_at' (or a non-empty scalar value)")

    if isinstance(run_at, (int, float)):
        dt = datetime.fromtimestamp(run_at, tz=tzinfo or timezone.utc)
    elif isinstance(run_at, datetime):
        dt = run_at
    else:
        try:
            dt = datetime.fromisoformat(str(run_at).replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"Invalid date.run_at: {run_at!r}") from e
    if dt.tzinfo is None:
        tzinfo = tzinfo or timezone.utc
        dt = tzinfo.localize(dt) if hasattr(tzinfo, "localize") else dt.replace(tzinfo=tzinfo)
    return DateTrigger(run_date=dt, timezone=dt.tzinfo)


# ---- Job wrapper ------------------------------------------------------------


def _add_job(scheduler: BackgroundScheduler, spec: JobSpec) -> None:
    """
    Register `spec` with a wrapper that runs the module through
    runner.run_module_once(trigger_type="scheduled") and logs start, finish
    and failures. Exceptions never escape into APScheduler.
    """

    def _job_wrapper() -> None:
        started = _time.monotonic()
        LOG.info("Job[%s] starting (module=%s)", spec.id, spec.module)
        try:
            runner.run_module_once(
                spec.module,
                kwargs=dict(spec.kwargs),
                send_email=spec.send_email,
                timeout_sec=spec.timeout_sec,
                trigger_type="scheduled",
                job_context={"job_id": spec.id, "summary": spec.summary},
                email_to=spec.email_to,
                cc=spec.email_cc,
                bcc=spec.email_bcc,
                subject=spec.subject,
            )
        except Exception:
            LOG.exception("Job[%s] failed after %.3fs", spec.id, _time.monotonic() - started)
            return
        LOG.info("Job[%s] finished in %.3fs", spec.id, _time.monotonic() - started)

    job = scheduler.add_job(
        func=_job_wrapper,
        trigger=spec.trigger,
        id=spec.id,
        name=spec.summary or spec.id,
        max_instances=spec.max_instances,
        coalesce=spec.coalesce,
        misfire_grace_time=spec.misfire_grace_time,
        replace_existing=True,
    )
    LOG.debug(
        "Registered job[%s] (module=%s, trigger=%s, max_instances=%s, coalesce=%s)",
        job.id,
        spec.module,
        spec.trigger,
        spec.max_instances,
        spec.coalesce,
    )


def _require(d: dict[str, Any], key: str) -> Any:
    if key not in d or d[key] in (None, ""):
        raise ValueError(f"Missing required key: {key}")
    return d[key]


def _int_or(v: Any, default: int | None) -> int | None:
    """int(v), or default when v is None or not integer-like."""
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default
