from __future__ import annotations

import threading
import unittest

from pipeline.cancellation import CancelToken, check_cancelled
from pipeline.errors import OperationCancelled, TaskTimeoutError


class CancelTokenTests(unittest.TestCase):
    def test_child_cancel_does_not_reach_parent_or_siblings(self):
        parent = CancelToken()
        first, second = parent.child(), parent.child()

        first.cancel("segment 1 abandoned")

        self.assertTrue(first.cancelled)
        self.assertFalse(parent.cancelled)
        self.assertFalse(second.cancelled)
        self.assertEqual(first.reason, "segment 1 abandoned")

    def test_parent_cancel_reaches_all_descendants(self):
        parent = CancelToken()
        child = parent.child()
        grandchild = child.child(5)

        parent.cancel("user navigated away")

        self.assertTrue(child.cancelled)
        self.assertTrue(grandchild.cancelled)
        self.assertEqual(grandchild.reason, "user navigated away")
        late = parent.child()
        self.assertTrue(late.cancelled)

    def test_parent_cancel_wakes_a_waiting_child(self):
        parent = CancelToken()
        child = parent.child()
        timer = threading.Timer(0.05, parent.cancel)
        timer.start()
        try:
            self.assertTrue(child.wait(5))
        finally:
            timer.cancel()

    def test_child_takes_tighter_deadline(self):
        parent = CancelToken(1)
        self.assertEqual(parent.child(100).deadline, parent.deadline)
        self.assertLess(parent.child(0.01).deadline, parent.deadline)
        self.assertIsNone(CancelToken().child().deadline)

    def test_check_cancelled_raises_matching_error(self):
        check_cancelled(None, "noop")
        with self.assertRaises(TaskTimeoutError):
            check_cancelled(CancelToken(0.0), "video_poll")
        token = CancelToken()
        token.cancel()
        with self.assertRaises(OperationCancelled):
            check_cancelled(token, "video_poll")

    def test_request_timeout_is_clamped(self):
        self.assertEqual(CancelToken().request_timeout(30), 30)
        self.assertLessEqual(CancelToken(2).request_timeout(30), 2)
        self.assertEqual(CancelToken(0.0).request_timeout(30), 0.1)


if __name__ == "__main__":
    unittest.main()
