import threading
import unittest
from unittest.mock import patch

from .context import ReconcileContext
from .errors import ReconcileCancelled


class TestReconcileContext(unittest.TestCase):
    def test_check_passes(self):
        ReconcileContext('default/foo', timeout=60).check()

    def test_check_after_stop(self):
        stopped = threading.Event()
        ctx = ReconcileContext('default/foo', stopped=stopped)
        stopped.set()

        with self.assertRaises(ReconcileCancelled):
            ctx.check()

    @patch('nlb_controller.context.time.monotonic')
    def test_check_after_deadline(self, mock_monotonic):
        mock_monotonic.return_value = 100.0
        ctx = ReconcileContext('default/foo', timeout=10)
        mock_monotonic.return_value = 111.0

        with self.assertRaises(ReconcileCancelled):
            ctx.check()

    @patch('nlb_controller.context.kopf')
    def test_events_need_a_body(self, mock_kopf):
        ReconcileContext('default/foo').info('CREATE', 'created')

        mock_kopf.info.assert_not_called()

    @patch('nlb_controller.context.kopf')
    def test_events_are_posted(self, mock_kopf):
        body = {'metadata': {'name': 'foo', 'namespace': 'default'}}
        ctx = ReconcileContext('default/foo', body=body)

        ctx.info('CREATE', 'LoadBalancer created')
        ctx.warn('ERROR', 'failed')

        mock_kopf.info.assert_called_once_with(body, reason='CREATE', message='LoadBalancer created')
        mock_kopf.warn.assert_called_once_with(body, reason='ERROR', message='failed')

    @patch('nlb_controller.context.kopf')
    def test_event_post_failure_is_logged(self, mock_kopf):
        mock_kopf.info.side_effect = RuntimeError('no event loop')
        ctx = ReconcileContext('default/foo', body={'metadata': {'name': 'foo'}})

        ctx.info('CREATE', 'created')


if __name__ == '__main__':
    unittest.main()
