import logging

from fitmatch.notifications import ToastCenter


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_toasts_expire_after_ttl():
    clock = Clock()
    center = ToastCenter(ttl=3.0, timer=clock)
    center.notify("Saved")
    center.notify("Oops", "error")
    assert [(t.message, t.level) for t in center.active()] == [
        ("Saved", "success"),
        ("Oops", "error"),
    ]
    clock.now = 3.5
    assert center.active() == []


def test_oldest_toast_dropped_when_full():
    center = ToastCenter(max_active=2, timer=lambda: 0.0)
    for text in ("one", "two", "three"):
        center.notify(text, "info")
    assert [t.message for t in center.active()] == ["two", "three"]


def test_dismiss_and_clear():
    center = ToastCenter(timer=lambda: 0.0)
    center.notify("first")
    center.notify("second")
    first = center.active()[0]
    center.dismiss(first.id)
    assert [t.message for t in center.active()] == ["second"]
    center.dismiss(9999)
    center.clear()
    assert center.active() == []


def test_notifications_are_logged(caplog):
    center = ToastCenter(timer=lambda: 0.0)
    with caplog.at_level(logging.INFO):
        center.notify("Could not load events.", "error")
    record = next(r for r in caplog.records if "Could not load events." in r.getMessage())
    assert record.levelno == logging.WARNING
