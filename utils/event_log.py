import threading
from collections import deque

from utils.helpers import utcnow


class WebhookEventLog:
    """
    Bounded in-memory record of processed webhook events.

    Used for debugging and monitoring only; it is not a source of truth and is
    never persisted. One instance lives for the life of the process (see
    extensions.webhook_log) and is sized by init_app at startup. Once full, the
    oldest entries are dropped first.
    """

    def __init__(self, max_entries=1000):
        self._lock = threading.Lock()
        self._entries = deque(maxlen=max_entries)

    def init_app(self, app):
        """Resizes the log from WEBHOOK_LOG_MAX_ENTRIES, discarding anything recorded before startup."""
        max_entries = app.config.get('WEBHOOK_LOG_MAX_ENTRIES', 1000)
        with self._lock:
            self._entries = deque(maxlen=max_entries)
        app.extensions['webhook_log'] = self

    @property
    def max_entries(self):
        return self._entries.maxlen

    def record(self, entry):
        """
        Appends an entry to the log.

        Args:
            entry (dict): Must carry 'event_id' and 'event_type'. 'processed'
                          defaults to True; 'error' and 'processing_time_ms' are optional.
                          A 'timestamp' is added when missing.

        Returns:
            dict: The stored entry.
        """
        if 'event_id' not in entry or 'event_type' not in entry:
            raise ValueError("Webhook log entries require 'event_id' and 'event_type'.")
        stored = {
            'event_id': entry['event_id'],
            'event_type': entry['event_type'],
            'timestamp': entry.get('timestamp') or utcnow(),
            'processed': entry.get('processed', True),
            'error': entry.get('error'),
            'processing_time_ms': entry.get('processing_time_ms'),
        }
        with self._lock:
            self._entries.append(stored)
        return stored

    def recent(self, n=50):
        """Returns up to `n` entries, newest first."""
        if n <= 0:
            return []
        with self._lock:
            snapshot = list(self._entries)
        return list(reversed(snapshot[-n:]))

    def by_type(self, event_type):
        """Returns every retained entry of `event_type`, newest first."""
        with self._lock:
            snapshot = list(self._entries)
        return [e for e in reversed(snapshot) if e['event_type'] == event_type]

    def failed(self):
        """Returns every retained entry that was not processed successfully, newest first."""
        with self._lock:
            snapshot = list(self._entries)
        return [e for e in reversed(snapshot) if not e['processed']]

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)
