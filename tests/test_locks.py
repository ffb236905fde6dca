import threading
import time

from app.core.locks import KeyedLocks


def test_same_key_is_exclusive():
    locks = KeyedLocks()
    inside = []
    overlap = []

    def work():
        with locks.hold(("order", 1)):
            inside.append(1)
            if len(inside) > 1:
                overlap.append(True)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=work) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlap == []
    assert locks.active_keys() == 0


def test_different_keys_do_not_block():
    locks = KeyedLocks()
    with locks.hold(1):
        acquired = threading.Event()

        def other():
            with locks.hold(2):
                acquired.set()

        t = threading.Thread(target=other)
        t.start()
        assert acquired.wait(timeout=2)
        t.join()
        assert locks.active_keys() == 1
    assert locks.active_keys() == 0
