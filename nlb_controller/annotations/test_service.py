import json
import unittest

from ..config import Configuration
from ..errors import ConfigurationError, DependencyMissingError
from . import SERVICE_CLASS_ANNOTATION, is_valid_service
from .action import ActionConfig
from .parser import AnnotationParser
from .service import parse_service_annotations

PREFIX = 'nlb.service.kubernetes.io'


def anno(name):
    return f'{PREFIX}/{name}'


class TestAnnotationParser(unittest.TestCase):
    def setUp(self):
        self.parser = AnnotationParser(PREFIX)

    def test_get_string(self):
        self.assertEqual(self.parser.get_string('scheme', {anno('scheme'): 'internal'}), 'internal')
        self.assertIsNone(self.parser.get_string('scheme', {}))
        self.assertIsNone(self.parser.get_string('scheme', None))

    def test_get_int(self):
        self.assertEqual(self.parser.get_int('n', {anno('n'): '5'}), 5)
        with self.assertRaises(ConfigurationError):
            self.parser.get_int('n', {anno('n'): 'five'})

    def test_get_bool(self):
        self.assertTrue(self.parser.get_bool('b', {anno('b'): 'true'}))
        self.assertFalse(self.parser.get_bool('b', {anno('b'): 'False'}))
        with self.assertRaises(ConfigurationError):
            self.parser.get_bool('b', {anno('b'): 'sometimes'})

    def test_get_string_slice(self):
        self.assertEqual(self.parser.get_string_slice('s', {anno('s'): 'a, b,,c '}), ['a', 'b', 'c'])
        self.assertEqual(self.parser.get_string_slice('s', {}), [])

    def test_get_key_values(self):
        self.assertEqual(self.parser.get_key_values('t', {anno('t'): 'a=1, b=2'}), {'a': '1', 'b': '2'})
        with self.assertRaises(ConfigurationError):
            self.parser.get_key_values('t', {anno('t'): 'a=1,b'})

    def test_get_string_group(self):
        annotations = {
            anno('actions.blue'): '{}',
            anno('actions.green'): '{"Type": "forward"}',
            anno('scheme'): 'internal',
        }
        self.assertEqual(self.parser.get_string_group('actions', annotations),
                         {'blue': '{}', 'green': '{"Type": "forward"}'})

    def test_custom_prefix(self):
        parser = AnnotationParser('example.com')
        self.assertEqual(parser.get_string('scheme', {'example.com/scheme': 'internal'}), 'internal')


class TestActionConfig(unittest.TestCase):
    def test_forward_action(self):
        actions = ActionConfig.parse({
            'blue': json.dumps({'Type': 'forward', 'TargetGroupArn': 'arn:tg/blue'}),
        })

        self.assertIn('blue', actions)
        self.assertEqual(actions.get_action('blue'), {'Type': 'forward', 'TargetGroupArn': 'arn:tg/blue'})

    def test_get_action_returns_copy(self):
        actions = ActionConfig({'blue': {'Type': 'forward', 'TargetGroupArn': 'arn:tg/blue'}})
        actions.get_action('blue')['Order'] = 1
        self.assertNotIn('Order', actions.get_action('blue'))

    def test_undeclared_action(self):
        with self.assertRaises(DependencyMissingError):
            ActionConfig().get_action('missing')

    def test_unsupported_type(self):
        actions = ActionConfig({'redirect': {'Type': 'redirect'}})
        with self.assertRaises(ConfigurationError):
            actions.get_action('redirect')

    def test_forward_without_target_group(self):
        actions = ActionConfig({'blue': {'Type': 'forward'}})
        with self.assertRaises(ConfigurationError):
            actions.get_action('blue')

    def test_invalid_json(self):
        with self.assertRaises(ConfigurationError):
            ActionConfig.parse({'blue': '{not json'})
        with self.assertRaises(ConfigurationError):
            ActionConfig.parse({'blue': '[1, 2]'})


class TestParseServiceAnnotations(unittest.TestCase):
    def setUp(self):
        self.cfg = Configuration(cluster_name='prod', vpc_id='vpc-1').validate()

    def test_defaults(self):
        annos = parse_service_annotations({}, self.cfg)

        self.assertEqual(annos.load_balancer.scheme, 'internal')
        self.assertEqual(annos.load_balancer.ip_address_type, 'ipv4')
        self.assertEqual(annos.load_balancer.subnets, [])
        self.assertEqual(annos.target_group.target_type, 'ip')
        self.assertEqual(annos.target_group.backend_protocol, 'TCP')
        self.assertEqual(annos.target_group.healthy_threshold_count, 3)
        self.assertEqual(annos.target_group.unhealthy_threshold_count, 3)
        self.assertEqual(annos.health_check.protocol, 'TCP')
        self.assertEqual(annos.health_check.port, 'traffic-port')
        self.assertEqual(annos.health_check.interval_seconds, 30)
        self.assertFalse(annos.health_check.uses_http)
        self.assertEqual(annos.tags, {})

    def test_full_set(self):
        annos = parse_service_annotations({
            anno('scheme'): 'internet-facing',
            anno('ip-address-type'): 'dualstack',
            anno('subnets'): 'subnet-a,subnet-b',
            anno('load-balancer-attributes'): 'load_balancing.cross_zone.enabled=true',
            anno('target-type'): 'instance',
            anno('backend-protocol'): 'UDP',
            anno('healthy-threshold-count'): '2',
            anno('unhealthy-threshold-count'): '4',
            anno('success-codes'): '200',
            anno('target-group-attributes'): 'deregistration_delay.timeout_seconds=30',
            anno('healthcheck-protocol'): 'HTTP',
            anno('healthcheck-port'): 'http',
            anno('healthcheck-path'): '/healthz',
            anno('healthcheck-interval-seconds'): '10',
            anno('tags'): 'team=web',
            anno('actions.blue'): json.dumps({'Type': 'forward', 'TargetGroupArn': 'arn:tg/blue'}),
        }, self.cfg)

        self.assertEqual(annos.load_balancer.scheme, 'internet-facing')
        self.assertEqual(annos.load_balancer.ip_address_type, 'dualstack')
        self.assertEqual(annos.load_balancer.subnets, ['subnet-a', 'subnet-b'])
        self.assertEqual(annos.load_balancer.attributes, {'load_balancing.cross_zone.enabled': 'true'})
        self.assertEqual(annos.target_group.target_type, 'instance')
        self.assertEqual(annos.target_group.backend_protocol, 'UDP')
        self.assertEqual(annos.target_group.healthy_threshold_count, 2)
        self.assertEqual(annos.target_group.unhealthy_threshold_count, 4)
        self.assertEqual(annos.target_group.success_codes, '200')
        self.assertEqual(annos.target_group.attributes, {'deregistration_delay.timeout_seconds': '30'})
        self.assertTrue(annos.health_check.uses_http)
        self.assertEqual(annos.health_check.port, 'http')
        self.assertEqual(annos.health_check.path, '/healthz')
        self.assertEqual(annos.health_check.interval_seconds, 10)
        self.assertEqual(annos.tags, {'team': 'web'})
        self.assertIn('blue', annos.actions)

    def test_target_type_default_from_config(self):
        self.cfg.default_target_type = 'instance'
        self.assertEqual(parse_service_annotations({}, self.cfg).target_group.target_type, 'instance')

    def test_pod_target_type_alias(self):
        annos = parse_service_annotations({anno('target-type'): 'pod'}, self.cfg)
        self.assertEqual(annos.target_group.target_type, 'ip')

    def test_invalid_values(self):
        for name, value in [
            ('scheme', 'public'),
            ('ip-address-type', 'ipv6'),
            ('target-type', 'lambda'),
            ('healthcheck-protocol', 'GRPC'),
            ('healthy-threshold-count', 'three'),
        ]:
            with self.subTest(annotation=name):
                with self.assertRaises(ConfigurationError):
                    parse_service_annotations({anno(name): value}, self.cfg)

    def test_backend_protocol_limited_to_tcp_and_udp(self):
        for value in ['TLS', 'TCP_UDP', 'HTTP']:
            with self.subTest(value=value):
                with self.assertRaises(ConfigurationError):
                    parse_service_annotations({anno('backend-protocol'): value}, self.cfg)


class TestServiceClass(unittest.TestCase):
    def test_is_valid_service(self):
        service = {'metadata': {'annotations': {SERVICE_CLASS_ANNOTATION: 'nlb'}}}

        self.assertTrue(is_valid_service('nlb', service))
        self.assertFalse(is_valid_service('other', service))
        self.assertFalse(is_valid_service('nlb', {'metadata': {}}))


if __name__ == '__main__':
    unittest.main()
