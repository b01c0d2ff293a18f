"""
Outbox Tests

Fire-and-forget writes must still be observable: every outcome is recorded
and handed to the callbacks, in submission order, without retries.
"""
import threading

from matrix.outbox import Outbox
from matrix.remote_store import RemoteResult


class TestSynchronousOutbox:

    def test_success_runs_callback(self):
        outbox = Outbox(synchronous=True)
        seen = []
        future = outbox.submit("write", lambda: RemoteResult(True, "ok"), on_success=seen.append)

        assert future.done()
        assert future.result().success
        assert seen == [RemoteResult(True, "ok")]
        assert outbox.deliveries[0].label == "write"
        assert outbox.failures() == []

    def test_failure_runs_failure_callback(self):
        outbox = Outbox(synchronous=True)
        succeeded, failed = [], []
        outbox.submit("write", lambda: RemoteResult(False, "timeout"),
                      on_success=succeeded.append, on_failure=failed.append)
        assert succeeded == []
        assert failed[0].message == "timeout"
        assert [d.label for d in outbox.failures()] == ["write"]

    def test_exception_becomes_failed_delivery(self):
        def explode():
            raise RuntimeError("socket closed")

        outbox = Outbox(synchronous=True)
        result = outbox.submit("write", explode).result()
        assert not result.success
        assert result.message == "socket closed"
        assert outbox.failures()[0].message == "socket closed"

    def test_callback_error_is_contained(self):
        def bad_callback(result):
            raise ValueError("bug in callback")

        outbox = Outbox(synchronous=True)
        outbox.submit("write", lambda: RemoteResult(True), on_success=bad_callback)
        assert outbox.deliveries[0].success

    def test_call_is_not_retried(self):
        calls = []

        def failing():
            calls.append(1)
            return RemoteResult(False, "down")

        Outbox(synchronous=True).submit("write", failing)
        assert calls == [1]

    def test_history_is_bounded(self):
        outbox = Outbox(synchronous=True, max_history=3)
        for i in range(5):
            outbox.submit(f"write-{i}", lambda: RemoteResult(True))
        assert [d.label for d in outbox.deliveries] == ["write-2", "write-3", "write-4"]

    def test_nothing_in_flight(self):
        outbox = Outbox(synchronous=True)
        assert outbox.in_flight() == 0
        assert outbox.flush(timeout=0.1)


class TestBackgroundOutbox:

    def test_delivers_in_submission_order(self):
        outbox = Outbox()
        order = []
        for i in range(5):
            outbox.submit(f"write-{i}", lambda i=i: order.append(i) or RemoteResult(True))
        assert outbox.flush(timeout=5)
        assert order == [0, 1, 2, 3, 4]
        assert len(outbox.deliveries) == 5
        outbox.shutdown()

    def test_in_flight_until_released(self):
        release = threading.Event()
        outbox = Outbox()

        def blocked():
            release.wait(5)
            return RemoteResult(True)

        future = outbox.submit("slow", blocked)
        assert outbox.in_flight() == 1
        assert not outbox.flush(timeout=0.05)

        release.set()
        assert outbox.flush(timeout=5)
        assert future.result().success
        assert outbox.in_flight() == 0
        outbox.shutdown()
