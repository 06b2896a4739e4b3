import re
import time
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

from app import settings

SPAM_PATTERNS = [
    re.compile(r"(.)\1{10,}"),                                   # same char 11+ times
    re.compile(r"https?://\S{50,}"),                             # overlong raw URL
    re.compile(r"\b(free|prize|winner|urgent|act now)\b", re.I),
]

SKIP_REPLY_PATTERNS = [
    re.compile(r"^(ok|okay|thanks|thank you|got it)$", re.I),
    re.compile(r"^(👍|👌|✅|🙏)$"),
    re.compile(r"^(delivered|read)$", re.I),
]

MAX_CONTENT_LENGTH = 1000

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.I)
_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


def sanitize_content(text: str) -> str:
    """Drop script blocks and HTML tags, cap the length, trim."""
    text = _SCRIPT_RE.sub("", text or "")
    text = _TAG_RE.sub("", text)
    return text[:MAX_CONTENT_LENGTH].strip()


def normalize_content(text: str) -> str:
    return _WS_RE.sub(" ", (text or "").strip()).casefold()


def is_spam(content: str) -> bool:
    return any(p.search(content or "") for p in SPAM_PATTERNS)


def is_acknowledgement(content: str) -> bool:
    body = (content or "").strip()
    return any(p.match(body) for p in SKIP_REPLY_PATTERNS)


class RateGuard:
    """Sliding-window admission control per key.

    A rejected event does not count against the window.
    """

    def __init__(self, window_seconds: Optional[float] = None, max_events: Optional[int] = None):
        self.window = float(window_seconds if window_seconds is not None else settings.RATE_LIMIT_WINDOW_SECONDS)
        self.max_events = int(max_events if max_events is not None else settings.RATE_LIMIT_MAX_EVENTS)
        self._events: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, q: Deque[float], now: float) -> None:
        cutoff = now - self.window
        while q and q[0] <= cutoff:
            q.popleft()

    def allow(self, key: str, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        with self._lock:
            q = self._events.setdefault(key, deque())
            self._prune(q, now)
            if len(q) >= self.max_events:
                return False
            q.append(now)
            return True

    def remaining(self, key: str, now: Optional[float] = None) -> int:
        now = time.monotonic() if now is None else now
        with self._lock:
            q = self._events.get(key)
            if not q:
                return self.max_events
            self._prune(q, now)
            return max(0, self.max_events - len(q))

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._events.clear()
            else:
                self._events.pop(key, None)


class RepeatTracker:
    """Last N normalised bodies per sender."""

    def __init__(self, history_size: Optional[int] = None):
        self.history_size = int(history_size if history_size is not None else settings.REPEAT_HISTORY_SIZE)
        self._history: Dict[str, Deque[str]] = {}
        self._lock = threading.Lock()

    def check_and_record(self, key: str, content: str) -> bool:
        """True when content matches one of the sender's recent bodies. Always recorded."""
        body = normalize_content(content)
        with self._lock:
            recent = self._history.setdefault(key, deque(maxlen=self.history_size))
            repeated = body in recent
            recent.append(body)
            return repeated

    def reset(self) -> None:
        with self._lock:
            self._history.clear()


@dataclass(frozen=True)
class Screening:
    spam: bool = False
    repeated: bool = False
    acknowledgement: bool = False

    @property
    def suppresses_reply(self) -> bool:
        return self.spam or self.repeated or self.acknowledgement


class ContentScreener:
    """Spam, repeat and acknowledgement checks for one inbound body.

    Without a RepeatTracker the screen is stateless and never flags repeats.
    track_repeats=False skips the repeat check for bodies that carry no text
    of their own, such as captionless media.
    """

    def __init__(self, repeats: Optional[RepeatTracker] = None):
        self.repeats = repeats

    def screen(self, sender: str, content: str, track_repeats: bool = True) -> Screening:
        repeated = False
        if self.repeats and track_repeats:
            repeated = self.repeats.check_and_record(sender, content)
        return Screening(
            spam=is_spam(content),
            repeated=repeated,
            acknowledgement=is_acknowledgement(content),
        )
