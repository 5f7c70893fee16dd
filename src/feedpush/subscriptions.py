"""Live registry of connected sessions and the channels they follow."""

import logging
import threading

logger = logging.getLogger(__name__)


class SubscriptionIndex:
    """Maps channel ids to the live sessions subscribed to them.

    Writers hold a short lock and swap in new frozensets; readers never lock
    and get a point-in-time snapshot. Create one per running server and pass
    it to whoever needs it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_channel: dict[int, frozenset] = {}
        self._by_session: dict[object, frozenset[int]] = {}

    def register(self, session, channel_id: int | None = None) -> None:
        """Track a session, and subscribe it to ``channel_id`` if given."""
        with self._lock:
            channels = self._by_session.get(session, frozenset())
            if channel_id is not None:
                channels = channels | {channel_id}
                members = self._by_channel.get(channel_id, frozenset())
                self._by_channel[channel_id] = members | {session}
            self._by_session[session] = channels

    def unregister(self, session) -> None:
        """Forget a session everywhere. Called when its connection closes."""
        with self._lock:
            channels = self._by_session.pop(session, frozenset())
            for channel_id in channels:
                members = self._by_channel.get(channel_id, frozenset()) - {session}
                if members:
                    self._by_channel[channel_id] = members
                else:
                    self._by_channel.pop(channel_id, None)
        logger.debug("Unregistered session from %d channels", len(channels))

    def sessions_for(self, channel_id: int) -> frozenset:
        return self._by_channel.get(channel_id, frozenset())

    def channels_for(self, session) -> frozenset[int]:
        return self._by_session.get(session, frozenset())

    def sessions_for_user(self, user_id: int) -> frozenset:
        with self._lock:
            sessions = list(self._by_session)
        return frozenset(s for s in sessions if s.user_id == user_id)

    def clear(self) -> None:
        with self._lock:
            self._by_channel = {}
            self._by_session = {}

    def __len__(self) -> int:
        return len(self._by_session)
