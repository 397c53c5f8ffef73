"""
Per-farm night return check scheduling.

Each farm gets one daily APScheduler cron job, fired at the "HH:MM" stored in
its night_check_schedule setting (host local time). Jobs live only in memory
and are rebuilt from the settings table whenever the process starts.
"""
from contextlib import nullcontext
from dataclasses import dataclass, field
import atexit
import logging
import threading

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from flask import current_app, has_app_context

from .barn_check import run_night_check
from .models import NIGHT_CHECK_SCHEDULE_KEY, Setting
from .utils import is_valid_schedule, time_to_cron

logger = logging.getLogger(__name__)

# Registry keys for the jobs that are not bound to a single farm.
DEFAULT_JOB_KEY = 'default'
FALLBACK_JOB_KEY = 'fallback'

UNINITIALIZED = 'uninitialized'
LOADING = 'loading'
READY = 'ready'


class SchedulerError(Exception):
    """Raised when a farm's night check job could not be replaced."""


def schedule_trigger(value):
    """Builds the daily cron trigger for an 'HH:MM' time in the local timezone."""
    if not is_valid_schedule(value):
        raise ValueError(f"Invalid schedule time {value!r}, expected HH:MM")
    return CronTrigger.from_crontab(time_to_cron(value))


def trigger_to_cron(trigger):
    """Renders a cron trigger back as 'minute hour day month day_of_week'."""
    fields = {f.name: str(f) for f in trigger.fields}
    return ' '.join(fields[name] for name in ('minute', 'hour', 'day', 'month', 'day_of_week'))


class SchedulerState:
    """
    Owns the APScheduler instance and the registry of installed night check jobs.

    The registry maps a key (farm id as a string, or one of the reserved
    'default' / 'fallback' keys) to its APScheduler job. There is at most one
    job per key; installing over an existing key swaps the old job out only once
    the new one is scheduled.
    """

    def __init__(self, scheduler=None):
        self.scheduler = scheduler or BackgroundScheduler()
        self._jobs = {}
        self._lock = threading.RLock()

    @property
    def running(self):
        return self.scheduler.running

    def install(self, key, trigger, func, args=()):
        """
        Replaces the job stored under key with a new one.
        The new job is added before the old one is removed, so a failure
        leaves the previous job scheduled.
        """
        key = str(key)
        with self._lock:
            # Ids are generated by APScheduler so old and new jobs can coexist briefly.
            job = self.scheduler.add_job(
                func,
                trigger=trigger,
                args=list(args),
                name=f'night_check:{key}',
                misfire_grace_time=300,
                coalesce=True,
            )
            previous = self._jobs.get(key)
            if previous is not None:
                try:
                    self._remove(previous)
                except Exception:
                    self._remove(job)
                    raise
            self._jobs[key] = job
            return job

    def stop_all(self):
        """Removes every installed job."""
        with self._lock:
            for job in self._jobs.values():
                self._remove(job)
            self._jobs.clear()

    def get(self, key):
        with self._lock:
            return self._jobs.get(str(key))

    def keys(self):
        with self._lock:
            return sorted(self._jobs)

    def snapshot(self):
        """Returns {key: cron expression} for every installed job."""
        with self._lock:
            return {key: trigger_to_cron(job.trigger) for key, job in self._jobs.items()}

    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def _remove(self, job):
        try:
            self.scheduler.remove_job(job.id)
        except JobLookupError:
            # Already gone from the scheduler, nothing left to cancel.
            logger.debug("Job %s was not scheduled anymore", job.id)


@dataclass
class ManualTriggerReport:
    """Result of an on-demand night check run."""
    results: list = field(default_factory=list)
    error: str = None

    @property
    def ok(self):
        return self.error is None


class NightCheckScheduler:
    """
    Loads every farm's night check time and keeps one daily job per farm.

    States go uninitialized -> loading -> ready. Once ready, reschedule()
    replaces a single farm's job without touching the others.
    """

    def __init__(self, app=None, state=None):
        self.app = None
        self.state = state
        self.status = UNINITIALIZED
        self._exit_hook_registered = False
        if app is not None:
            self.init_app(app, state)

    def init_app(self, app, state=None):
        if self.state is not None:
            self.state.shutdown()
        self.app = app
        self.state = state or SchedulerState()
        self.status = UNINITIALIZED
        app.extensions['night_check'] = self

    @property
    def default_time(self):
        return self.app.config.get('NIGHT_CHECK_DEFAULT_TIME', '21:00')

    # --- Startup ---

    def start(self):
        """Loads the schedules and starts the background scheduler."""
        self.load_schedules()
        self.state.start()
        if not self._exit_hook_registered:
            atexit.register(self.shutdown)
            self._exit_hook_registered = True
        logger.info("Night check scheduler started with jobs: %s", self.state.snapshot())

    def shutdown(self):
        self.state.shutdown()

    def load_schedules(self):
        """
        Rebuilds the registry from the persisted night_check_schedule settings.
        Never raises: if the settings cannot be read, one global fallback job is installed.
        """
        self.status = LOADING
        try:
            schedules = self._fetch_schedules()
            self.state.stop_all()

            for farm_id, value in schedules:
                if not value:
                    value = self.default_time
                elif not is_valid_schedule(value):
                    logger.warning("Farm %s has invalid night check time %r, using %s",
                                   farm_id, value, self.default_time)
                    value = self.default_time
                self._install_farm(farm_id, value)

            if not schedules:
                logger.info("No farm schedules found, setting up default %s schedule", self.default_time)
                self.state.install(DEFAULT_JOB_KEY, schedule_trigger(self.default_time), self._run_scheduled)
        except Exception:
            logger.exception("Error setting up night check schedules, falling back to %s", self.default_time)
            self._install_fallback()

        self.status = READY
        return self.state.snapshot()

    def _fetch_schedules(self):
        with self._app_context():
            settings = Setting.query.filter_by(key=NIGHT_CHECK_SCHEDULE_KEY).order_by(Setting.farm_id).all()
            return [(setting.farm_id, setting.value) for setting in settings]

    def _app_context(self):
        """Reuses the active app context when it belongs to our app."""
        if has_app_context() and current_app._get_current_object() is self.app:
            return nullcontext()
        return self.app.app_context()

    def _install_fallback(self):
        try:
            self.state.stop_all()
        except Exception:
            logger.exception("Could not clear night check jobs before fallback")
        try:
            self.state.install(FALLBACK_JOB_KEY, schedule_trigger(self.default_time), self._run_scheduled)
        except Exception:
            logger.exception("Could not install the fallback night check job")

    def _install_farm(self, farm_id, value):
        job = self.state.install(farm_id, schedule_trigger(value), self._run_scheduled, args=(farm_id,))
        logger.info("Night check scheduled for farm %s at %s daily", farm_id, value)
        return job

    # --- Runtime changes ---

    def reschedule(self, farm_id, new_time):
        """Replaces one farm's job so it fires daily at new_time."""
        try:
            return self._install_farm(farm_id, new_time)
        except Exception as e:
            logger.exception("Error updating night check schedule for farm %s", farm_id)
            raise SchedulerError(f"Could not reschedule night check for farm {farm_id}: {e}") from e

    # --- Execution ---

    def _run_scheduled(self, farm_id=None):
        """Job callback. Failures are logged; the next day's run is the retry."""
        logger.info("Running scheduled night return check for %s",
                    f"farm {farm_id}" if farm_id is not None else "all farms")
        try:
            with self._app_context():
                results = run_night_check(farm_id)
        except Exception:
            logger.exception("Scheduled night return check failed for farm %s", farm_id)
            return
        for result in results:
            logger.info("Farm %s: %s", result.farm_id, result.summary)

    def trigger_now(self, farm_id=None):
        """Runs the night check immediately, bypassing the timers."""
        logger.info("Manual night return check%s", f" for farm {farm_id}" if farm_id is not None else "")
        try:
            with self._app_context():
                results = run_night_check(farm_id)
        except Exception as e:
            logger.exception("Manual night return check failed")
            return ManualTriggerReport(error=str(e))
        return ManualTriggerReport(results=results)


night_check = NightCheckScheduler()
