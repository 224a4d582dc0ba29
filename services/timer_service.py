"""
Betting timer service.

One single-shot countdown per player. When a betting window expires the
callback auto-submits a zero stake with the round's default choice.

A timer carries the key (phase, battle, epoch) it was armed for. The epoch
is the session's betting window counter, so a key from a window that was
reset or already settled never matches again even when phase and battle
repeat. Re-arming or cancelling drops the old entry, and a firing timer
whose key is no longer registered does nothing. The callback itself must
still re-check the key against the session under the player mutex.
"""
import logging
import threading
from typing import Callable, Dict, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)


class TimerKey(NamedTuple):
    phase: str
    battle: int
    epoch: int = 0


TimerCallback = Callable[[int, TimerKey], None]


class BettingTimers:
    """Registry of pending betting timers, keyed by player id."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._lock = threading.Lock()
        self._timers: Dict[int, Tuple[TimerKey, threading.Timer]] = {}

    def schedule(self, player_id: int, key: TimerKey, delay: float, callback: TimerCallback) -> bool:
        """Arm (or re-arm) the countdown for a player. No-op when disabled."""
        if not self.enabled:
            return False

        with self._lock:
            previous = self._timers.pop(player_id, None)
            if previous:
                previous[1].cancel()

            timer = threading.Timer(delay, self._fire, args=(player_id, key, callback))
            timer.daemon = True
            self._timers[player_id] = (key, timer)
            timer.start()

        logger.info(
            f"[timer-set] player={player_id} phase={key.phase} battle={key.battle} "
            f"epoch={key.epoch} duration={delay}s"
        )
        return True

    def cancel(self, player_id: int) -> bool:
        with self._lock:
            entry = self._timers.pop(player_id, None)
        if not entry:
            return False
        entry[1].cancel()
        logger.info(f"[timer-cancel] player={player_id} phase={entry[0].phase} battle={entry[0].battle}")
        return True

    def pending(self, player_id: int) -> Optional[TimerKey]:
        with self._lock:
            entry = self._timers.get(player_id)
        return entry[0] if entry else None

    def shutdown(self) -> None:
        with self._lock:
            entries = list(self._timers.values())
            self._timers.clear()
        for _, timer in entries:
            timer.cancel()

    def _fire(self, player_id: int, key: TimerKey, callback: TimerCallback) -> None:
        with self._lock:
            entry = self._timers.get(player_id)
            if not entry or entry[0] != key:
                logger.info(f"[timer-abort] player={player_id} phase={key.phase} stale timer")
                return
            del self._timers[player_id]

        logger.info(f"[timer-fire] player={player_id} phase={key.phase} battle={key.battle}")
        try:
            callback(player_id, key)
        except Exception as e:
            # Runs on a background thread; nobody upstream can catch it.
            logger.error(f"Auto-submit failed for player {player_id}: {e}", exc_info=True)
