import unittest
from unittest.mock import MagicMock, patch
import os
from botocore.exceptions import ClientError
from .client import aws_config, call_aws_operation, get_credentials, get_elbv2_client, get_tagging_client
from ..errors import CloudAPIError, ReconcileCancelled


def mock_session_with_credentials(token="MOCK_TOKEN"):
    mock_session = MagicMock()
    mock_credentials = MagicMock()
    mock_credentials.access_key = "MOCK_ACCESS_KEY"
    mock_credentials.secret_key = "MOCK_SECRET_KEY"
    mock_credentials.token = token
    mock_session.get_credentials.return_value = mock_credentials
    return mock_session


class TestAWSClient(unittest.TestCase):
    def test_get_credentials_irsa(self):
        """Test that IRSA credentials are properly detected and used"""
        with patch('boto3.Session', return_value=mock_session_with_credentials()):
            credentials = get_credentials()
            self.assertIsNotNone(credentials)
            self.assertEqual(credentials.access_key, "MOCK_ACCESS_KEY")
            self.assertEqual(credentials.secret_key, "MOCK_SECRET_KEY")
            self.assertEqual(credentials.token, "MOCK_TOKEN")

    def test_get_credentials_none(self):
        """Test handling when no credentials are found"""
        mock_session = MagicMock()
        mock_session.get_credentials.return_value = None

        with patch('boto3.Session', return_value=mock_session):
            credentials = get_credentials()
            self.assertIsNone(credentials)

    def test_get_elbv2_client_with_region(self):
        """Test client creation with explicit region"""
        mock_session = mock_session_with_credentials()
        with patch('boto3.Session', return_value=mock_session) as mock_session_cls, \
             patch('boto3.client') as mock_client:
            client = get_elbv2_client(region="us-west-2")
            mock_session_cls.assert_called_once_with(region_name="us-west-2")
            mock_session.client.assert_called_once_with('elbv2', config=aws_config)
            self.assertIs(client, mock_session.client.return_value)
            mock_client.assert_not_called()

    def test_get_tagging_client_default_region(self):
        """Test client creation with region from environment"""
        mock_session = mock_session_with_credentials(token=None)
        with patch('boto3.Session', return_value=mock_session) as mock_session_cls, \
             patch.dict(os.environ, {'AWS_DEFAULT_REGION': 'us-east-1'}):
            get_tagging_client()
            mock_session_cls.assert_called_once_with(region_name="us-east-1")
            self.assertEqual(mock_session.client.call_args[0][0], 'resourcegroupstaggingapi')

    def test_client_does_not_freeze_credentials(self):
        """Credentials are left to the session so refreshable ones keep refreshing"""
        mock_session = mock_session_with_credentials()
        with patch('boto3.Session', return_value=mock_session):
            get_elbv2_client(region="us-west-2")
            mock_session.get_credentials.assert_not_called()
            call_kwargs = mock_session.client.call_args[1]
            for key in ('aws_access_key_id', 'aws_secret_access_key', 'aws_session_token'):
                self.assertNotIn(key, call_kwargs)


class TestCallAWSOperation(unittest.TestCase):
    def setUp(self):
        self.ctx = MagicMock()

    def test_returns_response(self):
        operation = MagicMock(__name__='describe_load_balancers', return_value={'LoadBalancers': []})

        response = call_aws_operation(self.ctx, operation, Names=['lb'])

        self.assertEqual(response, {'LoadBalancers': []})
        operation.assert_called_once_with(Names=['lb'])
        self.ctx.check.assert_called_once()

    def test_client_error_is_wrapped(self):
        error = ClientError({'Error': {'Code': 'Throttling', 'Message': 'Rate exceeded'}}, 'CreateTargetGroup')
        operation = MagicMock(__name__='create_target_group', side_effect=error)

        with self.assertRaises(CloudAPIError) as cm:
            call_aws_operation(self.ctx, operation, Name='tg')

        self.assertEqual(cm.exception.code, 'Throttling')
        self.assertEqual(cm.exception.operation, 'create_target_group')
        self.assertIs(cm.exception.__cause__, error)
        operation.assert_called_once()

    def test_cancelled_context_skips_call(self):
        self.ctx.check.side_effect = ReconcileCancelled("stopping")
        operation = MagicMock(__name__='delete_listener')

        with self.assertRaises(ReconcileCancelled):
            call_aws_operation(self.ctx, operation, ListenerArn='arn')

        operation.assert_not_called()


if __name__ == '__main__':
    unittest.main()
