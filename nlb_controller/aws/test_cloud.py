import unittest
from unittest.mock import MagicMock
from botocore.exceptions import ClientError
from .cloud import Cloud, RESOURCE_TYPE_SUBNET, RESOURCE_TYPE_TARGET_GROUP
from ..errors import CloudAPIError


def client_error(code, operation):
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


class TestCloud(unittest.TestCase):
    def setUp(self):
        self.ctx = MagicMock()
        self.elbv2 = MagicMock()
        self.ec2 = MagicMock()
        self.tagging = MagicMock()
        self.cloud = Cloud(elbv2=self.elbv2, ec2=self.ec2, tagging=self.tagging)

    def test_get_load_balancer_by_name(self):
        self.elbv2.describe_load_balancers.return_value = {'LoadBalancers': [{'LoadBalancerArn': 'arn:lb'}]}

        self.assertEqual(self.cloud.get_load_balancer_by_name(self.ctx, 'lb'), {'LoadBalancerArn': 'arn:lb'})
        self.elbv2.describe_load_balancers.assert_called_once_with(Names=['lb'])

    def test_get_load_balancer_by_name_not_found(self):
        self.elbv2.describe_load_balancers.side_effect = client_error('LoadBalancerNotFound', 'DescribeLoadBalancers')

        self.assertIsNone(self.cloud.get_load_balancer_by_name(self.ctx, 'lb'))

    def test_get_load_balancer_by_name_other_error(self):
        self.elbv2.describe_load_balancers.side_effect = client_error('AccessDenied', 'DescribeLoadBalancers')

        with self.assertRaises(CloudAPIError):
            self.cloud.get_load_balancer_by_name(self.ctx, 'lb')

    def test_get_target_group_by_name_not_found(self):
        self.elbv2.describe_target_groups.side_effect = client_error('TargetGroupNotFound', 'DescribeTargetGroups')

        self.assertIsNone(self.cloud.get_target_group_by_name(self.ctx, 'tg'))

    def test_describe_targets(self):
        self.elbv2.describe_target_health.return_value = {'TargetHealthDescriptions': [
            {'Target': {'Id': '10.0.0.1', 'Port': 8080}, 'TargetHealth': {'State': 'healthy'}},
        ]}

        self.assertEqual(self.cloud.describe_targets(self.ctx, 'arn:tg'), [{'Id': '10.0.0.1', 'Port': 8080}])

    def test_describe_tags(self):
        self.elbv2.describe_tags.return_value = {'TagDescriptions': [
            {'ResourceArn': 'arn:tg', 'Tags': [{'Key': 'a', 'Value': '1'}]},
        ]}

        self.assertEqual(self.cloud.describe_tags(self.ctx, 'arn:tg'), {'a': '1'})

    def test_modify_attributes_sends_key_values(self):
        self.cloud.modify_target_group_attributes(self.ctx, 'arn:tg', {'b': '2', 'a': '1'})

        self.elbv2.modify_target_group_attributes.assert_called_once_with(
            TargetGroupArn='arn:tg',
            Attributes=[{'Key': 'a', 'Value': '1'}, {'Key': 'b', 'Value': '2'}])

    def test_describe_listeners_paginates(self):
        self.elbv2.describe_listeners.side_effect = [
            {'Listeners': [{'Port': 80}], 'NextMarker': 'next'},
            {'Listeners': [{'Port': 443}]},
        ]

        listeners = self.cloud.describe_listeners(self.ctx, 'arn:lb')

        self.assertEqual([ls['Port'] for ls in listeners], [80, 443])
        self.assertEqual(self.elbv2.describe_listeners.call_args_list[1][1]['Marker'], 'next')

    def test_get_resources_by_tags_paginates(self):
        self.tagging.get_resources.side_effect = [
            {'ResourceTagMappingList': [{'ResourceARN': 'arn:tg/1', 'Tags': [{'Key': 'k', 'Value': 'v'}]}],
             'PaginationToken': 'token'},
            {'ResourceTagMappingList': [{'ResourceARN': 'arn:tg/2', 'Tags': []}], 'PaginationToken': ''},
        ]

        resources = self.cloud.get_resources_by_tags(self.ctx, {'k': 'v'}, RESOURCE_TYPE_TARGET_GROUP)

        self.assertEqual(resources, {'arn:tg/1': {'k': 'v'}, 'arn:tg/2': {}})
        first_call = self.tagging.get_resources.call_args_list[0][1]
        self.assertEqual(first_call['TagFilters'], [{'Key': 'k', 'Values': ['v']}])
        self.assertEqual(first_call['ResourceTypeFilters'], [RESOURCE_TYPE_TARGET_GROUP])
        self.assertEqual(self.tagging.get_resources.call_args_list[1][1]['PaginationToken'], 'token')

    def test_get_cluster_subnets(self):
        self.tagging.get_resources.return_value = {'ResourceTagMappingList': []}

        self.cloud.get_cluster_subnets(self.ctx, 'kubernetes.io/cluster/prod')

        call_kwargs = self.tagging.get_resources.call_args[1]
        self.assertEqual(call_kwargs['TagFilters'],
                         [{'Key': 'kubernetes.io/cluster/prod', 'Values': ['owned', 'shared']}])
        self.assertEqual(call_kwargs['ResourceTypeFilters'], [RESOURCE_TYPE_SUBNET])

    def test_get_subnets_by_name_or_id(self):
        self.ec2.describe_subnets.side_effect = [
            {'Subnets': [{'SubnetId': 'subnet-a'}]},
            {'Subnets': [{'SubnetId': 'subnet-b'}]},
        ]

        subnets = self.cloud.get_subnets_by_name_or_id(self.ctx, ['subnet-a', 'private-b'])

        self.assertEqual([s['SubnetId'] for s in subnets], ['subnet-a', 'subnet-b'])
        filters = [c[1]['Filters'] for c in self.ec2.describe_subnets.call_args_list]
        self.assertEqual(filters[0], [{'Name': 'subnet-id', 'Values': ['subnet-a']}])
        self.assertEqual(filters[1], [{'Name': 'tag:Name', 'Values': ['private-b']}])


if __name__ == '__main__':
    unittest.main()
