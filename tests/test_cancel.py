import signal
import sys
import threading

import pytest

from conveyor.cancel import CancelToken, handle_signals


def test_token_first_reason_wins():
    token = CancelToken()
    assert not token.is_set()
    token.cancel("first")
    token.cancel("second")
    assert token.is_set()
    assert token.reason == "first"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals required")
def test_handle_signals_routes_sigterm_and_restores():
    before = signal.getsignal(signal.SIGTERM)
    token = CancelToken()
    with handle_signals(token):
        signal.raise_signal(signal.SIGTERM)
        assert token.is_set()
    assert token.reason == "received SIGTERM"
    assert signal.getsignal(signal.SIGTERM) == before


def test_handle_signals_noop_off_main_thread():
    token = CancelToken()
    seen = []

    def worker():
        with handle_signals(token) as t:
            seen.append(t)

    t = threading.Thread(target=worker)
    t.start()
    t.join()
    assert seen == [token]
