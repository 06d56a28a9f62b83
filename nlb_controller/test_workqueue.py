import threading
import unittest
from unittest.mock import MagicMock, patch

import kopf

from .workqueue import RateLimitingQueue, process_next_item, run_worker


class TestRateLimitingQueue(unittest.TestCase):
    def setUp(self):
        self.queue = RateLimitingQueue(base_delay=1, max_delay=8)

    def tearDown(self):
        self.queue.shut_down()

    def test_duplicate_adds_are_coalesced(self):
        self.queue.add('default/foo')
        self.queue.add('default/foo')
        self.queue.add('default/bar')

        self.assertEqual(len(self.queue), 2)
        self.assertEqual(self.queue.get(timeout=1), 'default/foo')
        self.assertEqual(self.queue.get(timeout=1), 'default/bar')

    def test_key_in_flight_is_not_handed_out_twice(self):
        self.queue.add('default/foo')
        key = self.queue.get(timeout=1)

        self.queue.add('default/foo')
        self.assertEqual(len(self.queue), 0)
        self.assertIsNone(self.queue.get(timeout=0.01))

        self.queue.done(key)
        self.assertEqual(self.queue.get(timeout=1), 'default/foo')

    def test_done_without_re_add(self):
        self.queue.add('default/foo')
        self.queue.done(self.queue.get(timeout=1))

        self.assertEqual(len(self.queue), 0)

    def test_backoff_is_exponential_and_capped(self):
        delays = [self.queue.when('default/foo') for _ in range(6)]

        self.assertEqual(delays, [1, 2, 4, 8, 8, 8])
        self.assertEqual(self.queue.num_requeues('default/foo'), 6)

        self.queue.forget('default/foo')
        self.assertEqual(self.queue.num_requeues('default/foo'), 0)
        self.assertEqual(self.queue.when('default/foo'), 1)

    def test_add_after(self):
        queue = RateLimitingQueue(base_delay=0.01)
        queue.add_after('default/foo', 0.01)

        self.assertEqual(queue.get(timeout=2), 'default/foo')
        queue.shut_down()

    def test_shut_down_releases_getters(self):
        results = []
        thread = threading.Thread(target=lambda: results.append(self.queue.get()))
        thread.start()

        self.queue.shut_down()
        thread.join(2)

        self.assertEqual(results, [None])
        self.queue.add('default/foo')
        self.assertEqual(len(self.queue), 0)


class TestProcessNextItem(unittest.TestCase):
    def setUp(self):
        self.queue = RateLimitingQueue()
        self.queue.add('default/foo')

    def tearDown(self):
        self.queue.shut_down()

    def test_success_forgets(self):
        self.queue.when('default/foo')
        process = MagicMock()

        self.assertTrue(process_next_item(self.queue, process))

        process.assert_called_once_with('default/foo')
        self.assertEqual(self.queue.num_requeues('default/foo'), 0)

    def test_permanent_error_is_not_requeued(self):
        process = MagicMock(side_effect=kopf.PermanentError('bad annotation'))

        with patch.object(self.queue, 'add_after') as mock_add_after:
            process_next_item(self.queue, process)

        mock_add_after.assert_not_called()
        self.assertEqual(self.queue.num_requeues('default/foo'), 0)

    def test_temporary_error_is_requeued(self):
        process = MagicMock(side_effect=kopf.TemporaryError('throttled'))

        with patch.object(self.queue, 'add_after') as mock_add_after:
            process_next_item(self.queue, process)

        mock_add_after.assert_called_once_with('default/foo', 1.0)
        self.assertEqual(self.queue.num_requeues('default/foo'), 1)

    def test_unexpected_error_is_requeued(self):
        process = MagicMock(side_effect=KeyError('spec'))

        with patch.object(self.queue, 'add_after') as mock_add_after:
            process_next_item(self.queue, process)

        mock_add_after.assert_called_once()

    def test_run_worker_stops_on_shut_down(self):
        process = MagicMock()
        worker = threading.Thread(target=run_worker, args=(self.queue, process))
        worker.start()

        self.queue.shut_down()
        worker.join(2)

        self.assertFalse(worker.is_alive())


if __name__ == '__main__':
    unittest.main()
