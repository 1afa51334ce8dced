from __future__ import annotations

import threading
import time
import unittest

from runrelay.lane_queue import LaneMetrics, LaneTimeoutError, ThreadLanes


class ThreadLanesTests(unittest.TestCase):
    def test_same_thread_is_serialized(self) -> None:
        lanes = ThreadLanes()
        active = 0
        peak = 0
        guard = threading.Lock()

        def work() -> None:
            nonlocal active, peak
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with guard:
                active -= 1

        workers = [threading.Thread(target=lanes.run, args=("thread_1", work)) for _ in range(4)]
        for w in workers:
            w.start()
        for w in workers:
            w.join(5)
        self.assertEqual(peak, 1)

    def test_different_threads_run_in_parallel(self) -> None:
        lanes = ThreadLanes()
        barrier = threading.Barrier(2, timeout=5)
        results: list[str] = []

        def work(label: str) -> None:
            barrier.wait()
            results.append(label)

        workers = [threading.Thread(target=lanes.run, args=(f"thread_{i}", lambda i=i: work(str(i)))) for i in (1, 2)]
        for w in workers:
            w.start()
        for w in workers:
            w.join(5)
        self.assertEqual(sorted(results), ["1", "2"])

    def test_lane_is_reentrant_and_reports_metrics(self) -> None:
        lanes = ThreadLanes()
        metrics: list[LaneMetrics] = []
        with lanes.lane("thread_1"):
            value = lanes.run("thread_1", lambda: 42, on_metrics=metrics.append)
        self.assertEqual(value, 42)
        self.assertEqual(len(metrics), 1)
        self.assertEqual(metrics[0].thread_id, "thread_1")
        self.assertGreaterEqual(metrics[0].wait_ms, 0.0)

    def test_idle_lanes_are_dropped(self) -> None:
        lanes = ThreadLanes()
        for i in range(50):
            lanes.run(f"thread_{i}", lambda: None)
        self.assertEqual(lanes.active_count(), 0)
        with lanes.lane("thread_1"):
            self.assertEqual(lanes.active_count(), 1)
        self.assertEqual(lanes.active_count(), 0)

    def test_acquire_times_out_while_another_thread_holds_the_lane(self) -> None:
        lanes = ThreadLanes()
        held = threading.Event()
        release = threading.Event()

        def holder() -> None:
            with lanes.lane("thread_1"):
                held.set()
                release.wait(5)

        worker = threading.Thread(target=holder)
        worker.start()
        try:
            self.assertTrue(held.wait(5))
            with self.assertRaises(LaneTimeoutError):
                lanes.run("thread_1", lambda: None, timeout=0.05)
            self.assertEqual(lanes.active_count(), 1)
        finally:
            release.set()
            worker.join(5)
        self.assertEqual(lanes.active_count(), 0)
        self.assertEqual(lanes.run("thread_1", lambda: "free", timeout=0.05), "free")


if __name__ == "__main__":
    unittest.main()
