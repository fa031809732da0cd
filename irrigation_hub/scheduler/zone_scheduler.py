"""Pulse-and-soak scheduler.

Each zone cycles Idle -> Watering -> Soaking -> Idle. A pulse opens the
valve for pulse_sec seconds, then the zone soaks for soak_min minutes so
water can spread before moisture is judged again. Every opening goes
through the safety ledger.

The scheduler thread is the only writer of zone runtime state and ledger
counters. Operator commands (manual valve, alarm clear, config reload,
emergency close) are queued and applied by the scheduler thread; callers
wait on a Future.
"""
import logging
import math
import queue
import threading
from concurrent.futures import Future
from dataclasses import replace
from typing import Dict, Optional, Set, Tuple

from irrigation_hub.config.config import SCHEDULER_TICK_SEC, MANUAL_COMMAND_TIMEOUT_SEC
from irrigation_hub.config.zone_loader import HubConfig, ZoneConfig, MODE_MONITOR
from irrigation_hub.errors import ActuatorError, CommandRefused
from irrigation_hub.hardware.valve_actuator import ValveActuator
from irrigation_hub.models.watering_event import WateringResult
from irrigation_hub.safety.fail_safe import FailSafe
from irrigation_hub.safety.ledger import SafetyLedger
from irrigation_hub.services.history_store import HistoryStore
from irrigation_hub.state.store import StateStore
from irrigation_hub.state.types import EventKind, ZoneRuntimeState, ZoneState

logger = logging.getLogger(__name__)

REASON_BELOW_MIN = 'below_min'
REASON_SOAK_CONTINUE = 'soak_continue'
REASON_MANUAL = 'manual'


class ZoneScheduler:
    """Background scheduler driving every zone's valve."""

    def __init__(self, store: StateStore, ledger: SafetyLedger, actuator: ValveActuator,
                 fail_safe: FailSafe, history: HistoryStore, tick_interval: float = SCHEDULER_TICK_SEC):
        """
        Initialize zone scheduler.

        Args:
            store: Shared state store
            ledger: Safety ledger (the only gate for opening a valve)
            actuator: Valve actuator
            fail_safe: Fail-safe escalation
            history: Watering event persistence
            tick_interval: Seconds between evaluations
        """
        self.store = store
        self.ledger = ledger
        self.actuator = actuator
        self.fail_safe = fail_safe
        self.history = history
        self.tick_interval = tick_interval

        self.is_running = False
        self.scheduler_thread: Optional[threading.Thread] = None
        self.error: Optional[BaseException] = None
        self._wake = threading.Event()
        self._commands: "queue.Queue[Tuple[str, Dict, Future]]" = queue.Queue()

        self._stale_zones: Set[str] = set()
        self._alerted_zones: Set[str] = set()
        self._audited_refusals: Set[Tuple[str, str, str]] = set()  # (day, zone_id, reason)

    # ------------------------------------------------------------------
    # Thread lifecycle
    # ------------------------------------------------------------------

    def start(self, initial_delay: Optional[float] = None):
        """
        Start the scheduler thread.

        The first evaluation waits one tick so early telemetry can arrive.
        """
        if self.is_running:
            return
        self.is_running = True
        delay = self.tick_interval if initial_delay is None else initial_delay
        self.scheduler_thread = threading.Thread(
            target=self._scheduler_loop, args=(delay,), name='zone-scheduler', daemon=True
        )
        self.scheduler_thread.start()
        self.store.record_event(
            EventKind.SCHEDULER,
            f"scheduler started (mode: {self.store.mode}, max concurrent valves: {self.ledger.max_concurrent_valves})",
        )
        logger.info("Zone scheduler started (tick %.1fs)", self.tick_interval)

    def stop(self):
        """Stop the scheduler and end any running pulse."""
        self.is_running = False
        self._wake.set()
        if self.scheduler_thread:
            self.scheduler_thread.join(timeout=5)
            if self.scheduler_thread.is_alive():
                logger.error("Scheduler thread did not stop in time")
                return
        self._cancel_pending_commands()
        self.close_all_zones(self.store.now(), 'shutdown')
        logger.info("Zone scheduler stopped")

    def is_alive(self) -> bool:
        return self.scheduler_thread is not None and self.scheduler_thread.is_alive()

    def _scheduler_loop(self, initial_delay: float):
        """Main scheduler loop."""
        next_tick = self.store.now() + initial_delay
        try:
            while self.is_running:
                self._wake.wait(timeout=self._seconds_until(next_tick))
                self._wake.clear()
                if not self.is_running:
                    break
                now = self.store.now()
                if now >= next_tick or self._deadline_due(now):
                    self.tick(now)
                    next_tick = now + self.tick_interval
                else:
                    self.process_commands(now)
        except Exception as e:
            self.error = e
            logger.exception("Scheduler thread crashed: %s", e)
            raise

    def _seconds_until(self, next_tick: float) -> float:
        now = self.store.now()
        wake_at = next_tick
        for zone_id, st in self.store.zone_states().items():
            zone = self.store.zone_config(zone_id)
            if zone is None:
                continue
            if st.state is ZoneState.WATERING and st.pulse_started is not None:
                wake_at = min(wake_at, st.pulse_started + zone.pulse_sec)
            elif st.state is ZoneState.SOAKING and st.soak_deadline is not None:
                wake_at = min(wake_at, st.soak_deadline)
        return max(0.05, wake_at - now)

    def _deadline_due(self, now: float) -> bool:
        for zone_id, st in self.store.zone_states().items():
            zone = self.store.zone_config(zone_id)
            if zone is None:
                continue
            if st.state is ZoneState.WATERING and st.pulse_started is not None \
                    and now >= st.pulse_started + zone.pulse_sec:
                return True
            if st.state is ZoneState.SOAKING and st.soak_deadline is not None and now >= st.soak_deadline:
                return True
        return False

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def tick(self, now: Optional[float] = None):
        """
        Apply queued commands, then evaluate every zone once, in sequence.

        Zones are evaluated one after another so a valve opened for one zone
        is already counted when the next zone checks the concurrency cap.
        """
        if now is None:
            now = self.store.now()
        self.process_commands(now)

        if self.fail_safe.is_stopped():
            self.fail_safe.all_off('emergency stop retry')

        for zone_id, zone in self.store.zone_configs().items():
            try:
                self._tick_zone(zone, now)
            except Exception as e:
                self._zone_fault(zone, now, e)

    def _tick_zone(self, zone: ZoneConfig, now: float):
        st = self.store.zone_state(zone.zone_id)

        if self.fail_safe.is_alarmed(zone.zone_id):
            if not st.alarmed:
                self.store.set_zone_state(zone.zone_id, replace(st, alarmed=True))
            return
        if st.alarmed:
            st = replace(st, alarmed=False)
            self.store.set_zone_state(zone.zone_id, st)

        if st.state is ZoneState.WATERING:
            if now - st.pulse_started >= zone.pulse_sec:
                self._end_pulse(zone, st, now, WateringResult.OK)
        elif st.state is ZoneState.SOAKING:
            if now >= st.soak_deadline:
                self._end_soak(zone, st, now)
        else:
            self._evaluate_idle(zone, st, now)

    def _evaluate_idle(self, zone: ZoneConfig, st: ZoneRuntimeState, now: float):
        avg = self.store.zone_average_moisture(zone.zone_id)
        if avg is None:
            self._mark_stale(zone, "no fresh sensor data, skipping")
            return
        self._stale_zones.discard(zone.zone_id)
        moisture, partial = avg

        if moisture >= zone.min_moisture:
            self._alerted_zones.discard(zone.zone_id)
            return

        if partial:
            logger.info("Zone %s: deciding on partial sensor data (%.3f)", zone.zone_id, moisture)
        self._try_start(zone, st, now, REASON_BELOW_MIN,
                        f"moisture {moisture:.3f} < min {zone.min_moisture:.3f}")

    def _end_soak(self, zone: ZoneConfig, st: ZoneRuntimeState, now: float):
        idle = ZoneRuntimeState(state=ZoneState.IDLE, valve_open=False, last_changed=now)
        self.store.set_zone_state(zone.zone_id, idle)

        avg = self.store.zone_average_moisture(zone.zone_id)
        if avg is None:
            self._mark_stale(zone, "soak done, moisture unknown; returning to idle")
            return
        self._stale_zones.discard(zone.zone_id)
        moisture, _ = avg

        if moisture >= zone.target_moisture:
            self._alerted_zones.discard(zone.zone_id)
            self._scheduler_event(zone, f"target reached (moisture {moisture:.3f} >= target {zone.target_moisture:.3f})")
            return

        self._scheduler_event(zone, f"soak done, moisture {moisture:.3f} < target {zone.target_moisture:.3f}")
        if not self._try_start(zone, idle, now, REASON_SOAK_CONTINUE,
                               f"moisture {moisture:.3f} < target {zone.target_moisture:.3f}"):
            self._scheduler_event(zone, "soak done, not re-opening; back to idle")

    def _try_start(self, zone: ZoneConfig, st: ZoneRuntimeState, now: float, reason: str, detail: str) -> bool:
        if self.store.mode == MODE_MONITOR:
            if zone.zone_id not in self._alerted_zones:
                self._alerted_zones.add(zone.zone_id)
                self._scheduler_event(zone, f"would water ({detail}, monitor mode)")
            return False
        if self.fail_safe.is_stopped():
            logger.warning("Zone %s: emergency stop active, not watering", zone.zone_id)
            return False
        if not self.actuator.is_available():
            logger.info("Zone %s: actuator unavailable, not watering", zone.zone_id)
            return False

        why = self.ledger.refusal_reason(zone.zone_id, zone.pulse_sec)
        if why is not None:
            self._refuse(zone, now, why)
            return False
        return self._start_pulse(zone, st, now, reason, detail)

    def _refuse(self, zone: ZoneConfig, now: float, why: str):
        key = (self.ledger.day_key(now), zone.zone_id, why)
        if key in self._audited_refusals:
            logger.debug("Zone %s: still refused (%s)", zone.zone_id, why)
            return
        self._audited_refusals.add(key)
        logger.warning("Zone %s: pulse refused (%s)", zone.zone_id, why)
        self._scheduler_event(zone, f"pulse refused ({why})")
        self.history.add_watering_event(now, now, zone.zone_id, f"limit_reached:{why}", WateringResult.REFUSED)

    # ------------------------------------------------------------------
    # Valve transitions
    # ------------------------------------------------------------------

    def _start_pulse(self, zone: ZoneConfig, st: ZoneRuntimeState, now: float, reason: str, detail: str) -> bool:
        channel = self.actuator.channel_for(zone)
        try:
            self.actuator.set_open(channel, True)
        except ActuatorError as e:
            self.history.add_watering_event(now, now, zone.zone_id, reason, WateringResult.FAILED)
            self.store.set_zone_state(zone.zone_id, ZoneRuntimeState(last_changed=now, alarmed=True))
            self._escalate(zone, now, f"failed to open valve for {zone.zone_id}: {e}")
            return False

        self.store.set_zone_state(zone.zone_id, ZoneRuntimeState(
            state=ZoneState.WATERING, valve_open=True, last_changed=now,
            pulse_started=now, pulse_reason=reason,
        ))
        self.store.record_valve(zone.zone_id, True)
        self._scheduler_event(zone, f"pulse started ({detail})")
        self._alerted_zones.discard(zone.zone_id)
        self._audited_refusals = {k for k in self._audited_refusals if k[1] != zone.zone_id}
        logger.info("Zone %s: pulse started for %ds (%s)", zone.zone_id, zone.pulse_sec, reason)
        return True

    def _end_pulse(self, zone: ZoneConfig, st: ZoneRuntimeState, now: float, result: WateringResult):
        """Close the valve; a completed pulse soaks, a stopped one goes Idle."""
        channel = self.actuator.channel_for(zone)
        try:
            self.actuator.set_open(channel, False)
        except ActuatorError as e:
            self._close_failed(zone, st, now, e)
            return

        self.ledger.record_pulse(zone.zone_id, self._charge(zone, st, now, result))
        self.history.add_watering_event(st.pulse_started, now, zone.zone_id, st.pulse_reason or REASON_MANUAL, result)
        self.store.record_valve(zone.zone_id, False)

        if result is WateringResult.OK:
            deadline = now + zone.soak_min * 60
            self.store.set_zone_state(zone.zone_id, ZoneRuntimeState(
                state=ZoneState.SOAKING, valve_open=False, last_changed=now, soak_deadline=deadline,
            ))
            self._scheduler_event(zone, f"pulse done, soaking {zone.soak_min}min")
        else:
            self.store.set_zone_state(zone.zone_id, ZoneRuntimeState(last_changed=now))
            self._scheduler_event(zone, f"pulse {result.value}")

    def _close_failed(self, zone: ZoneConfig, st: ZoneRuntimeState, now: float, error: Exception):
        """A valve that will not close is fatal: everything off, zone alarmed."""
        self.ledger.record_pulse(zone.zone_id, self._charge(zone, st, now, WateringResult.FAILED))
        self.history.add_watering_event(st.pulse_started, now, zone.zone_id,
                                        st.pulse_reason or REASON_MANUAL, WateringResult.FAILED)
        self.store.set_zone_state(zone.zone_id, ZoneRuntimeState(last_changed=now, alarmed=True))
        self._escalate(zone, now, f"failed to close valve for {zone.zone_id}: {error}")

    def _escalate(self, zone: ZoneConfig, now: float, reason: str):
        """Fail-safe all_off, then settle every other running pulse as stopped."""
        self.fail_safe.trigger(reason, zone.zone_id)
        self.close_all_zones(now, 'fail-safe')

    @staticmethod
    def _charge(zone: ZoneConfig, st: ZoneRuntimeState, now: float, result: WateringResult) -> int:
        if result is WateringResult.OK or st.pulse_started is None:
            return zone.pulse_sec
        return min(zone.pulse_sec, max(0, math.ceil(now - st.pulse_started)))

    def _zone_fault(self, zone: ZoneConfig, now: float, error: Exception):
        logger.exception("Scheduler error in zone %s: %s", zone.zone_id, error)
        st = self.store.zone_state(zone.zone_id)
        if st is not None and st.state is ZoneState.WATERING:
            self.ledger.record_pulse(zone.zone_id, self._charge(zone, st, now, WateringResult.FAILED))
            self.history.add_watering_event(st.pulse_started, now, zone.zone_id,
                                            st.pulse_reason or REASON_MANUAL, WateringResult.FAILED)
        self.store.set_zone_state(zone.zone_id, ZoneRuntimeState(last_changed=now, alarmed=True))
        self._escalate(zone, now, f"scheduler error in {zone.zone_id}: {error}")

    def close_all_zones(self, now: float, why: str):
        """End every running pulse as stopped (shutdown or connection loss)."""
        for zone_id, st in self.store.zone_states().items():
            zone = self.store.zone_config(zone_id)
            if zone is None or st.state is not ZoneState.WATERING:
                continue
            logger.warning("Zone %s: stopping pulse (%s)", zone_id, why)
            try:
                self._end_pulse(zone, st, now, WateringResult.STOPPED)
            except Exception as e:
                self._zone_fault(zone, now, e)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _scheduler_event(self, zone: ZoneConfig, detail: str):
        self.store.record_event(EventKind.SCHEDULER, f"{zone.zone_id}: {detail}")

    def _mark_stale(self, zone: ZoneConfig, detail: str):
        if zone.zone_id in self._stale_zones:
            return
        self._stale_zones.add(zone.zone_id)
        logger.warning("Zone %s: %s", zone.zone_id, detail)
        self.store.record_event(EventKind.STALE, f"{zone.zone_id}: {detail}")

    # ------------------------------------------------------------------
    # Operator commands
    # ------------------------------------------------------------------

    def submit(self, command: str, **payload) -> Future:
        """Queue a command for the scheduler thread."""
        future: Future = Future()
        self._commands.put((command, payload, future))
        self._wake.set()
        return future

    def _wait(self, future: Future, timeout: float):
        return future.result(timeout=timeout)

    def request_manual(self, zone_id: str, is_open: bool, timeout: float = MANUAL_COMMAND_TIMEOUT_SEC) -> Dict:
        """
        Open or close a zone by hand.

        A manual open passes the same ledger and mode checks as a scheduled
        pulse and then runs for the zone's pulse_sec.

        Raises:
            KeyError: unknown zone
            CommandRefused: the ledger, mode or an alarm forbids it
            ActuatorError: the valve could not be driven
        """
        return self._wait(self.submit('manual', zone_id=zone_id, is_open=is_open), timeout)

    def request_clear_alarm(self, zone_id: str, timeout: float = MANUAL_COMMAND_TIMEOUT_SEC) -> Dict:
        return self._wait(self.submit('clear_alarm', zone_id=zone_id), timeout)

    def request_reload(self, config: HubConfig, timeout: float = MANUAL_COMMAND_TIMEOUT_SEC) -> Dict:
        """Replace zones and sensors; refused while any zone is watering."""
        return self._wait(self.submit('reload', config=config), timeout)

    def request_all_off(self, reason: str):
        """
        Close every valve now and end running pulses on the next wake.

        Safe to call from any thread.
        """
        self.fail_safe.all_off(reason)
        self.submit('all_off', reason=reason)

    def process_commands(self, now: float):
        while True:
            try:
                command, payload, future = self._commands.get_nowait()
            except queue.Empty:
                return
            if not future.set_running_or_notify_cancel():
                continue
            try:
                handler = getattr(self, f'_cmd_{command}')
                future.set_result(handler(now, **payload))
            except Exception as e:
                future.set_exception(e)

    def _cancel_pending_commands(self):
        while True:
            try:
                _, _, future = self._commands.get_nowait()
            except queue.Empty:
                return
            if future.set_running_or_notify_cancel():
                future.set_exception(CommandRefused("scheduler stopped"))

    def _cmd_manual(self, now: float, zone_id: str, is_open: bool) -> Dict:
        zone = self.store.zone_config(zone_id)
        if zone is None:
            raise KeyError(zone_id)
        st = self.store.zone_state(zone_id)

        if is_open:
            if self.fail_safe.is_alarmed(zone_id):
                raise CommandRefused(f"zone {zone_id} is alarmed")
            if self.fail_safe.is_stopped():
                raise CommandRefused("emergency stop active")
            if self.store.mode == MODE_MONITOR:
                raise CommandRefused("monitor mode: valves are never opened")
            if st.state is ZoneState.WATERING:
                return st.to_dict()
            why = self.ledger.refusal_reason(zone_id, zone.pulse_sec)
            if why is not None:
                self._refuse(zone, now, why)
                raise CommandRefused(f"limit_reached:{why}")
            if not self._start_pulse(zone, st, now, REASON_MANUAL, "manual"):
                raise ActuatorError(f"failed to open valve for {zone_id}", [self.actuator.channel_for(zone)])
        elif st.state is ZoneState.WATERING:
            self._end_pulse(zone, st, now, WateringResult.STOPPED)
        else:
            try:
                self.actuator.set_open(self.actuator.channel_for(zone), False)
            except ActuatorError as e:
                self.store.set_zone_state(zone_id, ZoneRuntimeState(last_changed=now, alarmed=True))
                self._escalate(zone, now, f"failed to close valve for {zone_id}: {e}")
                raise
            if st.state is ZoneState.SOAKING:
                self.store.set_zone_state(zone_id, ZoneRuntimeState(last_changed=now, alarmed=st.alarmed))
                self._scheduler_event(zone, "soak cancelled (manual)")
        return self.store.zone_state(zone_id).to_dict()

    def _cmd_clear_alarm(self, now: float, zone_id: str) -> Dict:
        if self.store.zone_config(zone_id) is None:
            raise KeyError(zone_id)
        cleared = self.fail_safe.clear_alarm(zone_id)
        st = self.store.zone_state(zone_id)
        if st.alarmed:
            st = replace(st, alarmed=False, last_changed=now)
            self.store.set_zone_state(zone_id, st)
        return {'zone_id': zone_id, 'cleared': cleared, 'state': st.to_dict()}

    def _cmd_reload(self, now: float, config: HubConfig) -> Dict:
        if self.store.watering_count() > 0:
            raise CommandRefused("a zone is watering; try again after the pulse")
        self.store.replace_config(config.zones, config.sensors)
        self.ledger.max_concurrent_valves = config.max_concurrent_valves
        self.actuator.add_channels(self.actuator.channel_for(z) for z in config.zones)
        self._stale_zones.clear()
        self._alerted_zones.clear()
        self.store.record_system(f"config reloaded: {len(config.zones)} zone(s), {len(config.sensors)} sensor(s)")
        logger.info("Config reloaded: %d zone(s), %d sensor(s)", len(config.zones), len(config.sensors))
        return {'zones': len(config.zones), 'sensors': len(config.sensors)}

    def _cmd_all_off(self, now: float, reason: str) -> Dict:
        self.close_all_zones(now, reason)
        return {'reason': reason}
