from datetime import date, datetime

import pytest

from shelfkeeper import LibraryPolicy, LibrarySystem

NOW = datetime(2025, 3, 10, 9, 0)


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail_next = 0

    def notify(self, notification):
        if self.fail_next:
            self.fail_next -= 1
            raise RuntimeError("mail relay down")
        self.sent.append(notification)

    def kinds(self):
        return [n.kind for n in self.sent]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def policy():
    return LibraryPolicy()


@pytest.fixture
def lib(policy, notifier):
    """Fresh library with one author and one publisher, clock pinned to NOW."""
    system = LibrarySystem(policy=policy, notifier=notifier, clock=lambda: NOW)
    system.add_author("Ursula", "Le Guin")
    system.add_publisher("Ace Books")
    return system


@pytest.fixture
def make_book(lib):
    counter = iter(range(1, 1000))

    def _make(copies=1, title="The Dispossessed"):
        n = next(counter)
        return lib.add_book(f"978-0-00-{n:06d}-0", f"{title} {n}", 1, 1, 1974, copies=copies)

    return _make


@pytest.fixture
def make_member(lib):
    counter = iter(range(1, 1000))

    def _make(first_name="Shevek", start=date(2025, 1, 1)):
        n = next(counter)
        return lib.register_member(first_name, "Anarres", f"member{n}@example.com", date(1990, 1, 1), start=start)

    return _make
