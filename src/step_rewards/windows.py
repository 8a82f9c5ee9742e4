"""Per-user rolling windows of recent samples."""

from collections import OrderedDict, deque

from .models import StepSample


class SampleWindows:
    """Keeps the last ``size`` samples of each user for fraud scoring.

    At most ``max_users`` windows are held; the least recently active user's
    window is dropped first.
    """

    def __init__(self, size: int = 10, max_users: int = 10_000):
        self.size = size
        self.max_users = max_users
        self._windows: OrderedDict[str, deque[StepSample]] = OrderedDict()

    def push(self, user_id: str, sample: StepSample) -> list[StepSample]:
        """Append ``sample`` and return the window with it as the newest entry."""
        window = self._windows.get(user_id)
        if window is None:
            window = self._windows[user_id] = deque(maxlen=self.size)
        else:
            self._windows.move_to_end(user_id)
        window.append(sample)

        while len(self._windows) > self.max_users:
            self._windows.popitem(last=False)
        return list(window)

    def __len__(self) -> int:
        return len(self._windows)
