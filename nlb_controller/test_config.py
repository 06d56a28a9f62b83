import unittest
import zlib

import kopf

from .config import Configuration, generate_name_prefix, load_from_env, parse_key_values
from .errors import ConfigurationError


class TestLoadFromEnv(unittest.TestCase):
    def setUp(self):
        self.env = {
            'K8S_CLUSTER_NAME': 'test-cluster',
            'AWS_VPC_ID': 'vpc-123',
        }

    def test_defaults(self):
        cfg = load_from_env(self.env)

        self.assertEqual(cfg.cluster_name, 'test-cluster')
        self.assertEqual(cfg.vpc_id, 'vpc-123')
        self.assertIsNone(cfg.region)
        self.assertEqual(cfg.annotation_prefix, 'nlb.service.kubernetes.io')
        self.assertEqual(cfg.service_class, 'nlb')
        self.assertEqual(cfg.default_target_type, 'ip')
        self.assertEqual(cfg.default_backend_protocol, 'TCP')
        self.assertEqual(cfg.default_tags, {})
        self.assertFalse(cfg.restrict_scheme)
        self.assertEqual(cfg.restrict_scheme_namespace, 'default')
        self.assertEqual(cfg.max_concurrent_reconciles, 1)
        self.assertEqual(cfg.reconcile_timeout, 300)
        self.assertEqual(cfg.resync_interval, 600)
        self.assertFalse(cfg.enable_webhook)

    def test_name_prefix_defaults_to_cluster_hash(self):
        cfg = load_from_env(self.env)

        expected = format(zlib.crc32(b'test-cluster') & 0xffffffff, '08x')
        self.assertEqual(cfg.name_prefix, expected)
        self.assertEqual(len(cfg.name_prefix), 8)

    def test_explicit_values(self):
        self.env.update({
            'AWS_DEFAULT_REGION': 'us-west-2',
            'NLB_NAME_PREFIX': 'prod',
            'NLB_SERVICE_CLASS': 'internal-nlb',
            'NLB_TARGET_TYPE': 'instance',
            'DEFAULT_TAGS': 'team=infra, env=prod',
            'NLB_CONTROLLER_RESTRICT_SCHEME': 'true',
            'NLB_CONTROLLER_RESTRICT_SCHEME_CONFIG_NAMESPACE': 'kube-system',
            'MAX_CONCURRENT_RECONCILES': '4',
            'RESYNC_INTERVAL': '60',
            'ENABLE_WEBHOOK': 'yes',
        })

        cfg = load_from_env(self.env)

        self.assertEqual(cfg.region, 'us-west-2')
        self.assertEqual(cfg.name_prefix, 'prod')
        self.assertEqual(cfg.service_class, 'internal-nlb')
        self.assertEqual(cfg.default_target_type, 'instance')
        self.assertEqual(cfg.default_tags, {'team': 'infra', 'env': 'prod'})
        self.assertTrue(cfg.restrict_scheme)
        self.assertEqual(cfg.restrict_scheme_namespace, 'kube-system')
        self.assertEqual(cfg.max_concurrent_reconciles, 4)
        self.assertEqual(cfg.resync_interval, 60.0)
        self.assertTrue(cfg.enable_webhook)

    def test_pod_target_type_becomes_ip(self):
        self.env['NLB_TARGET_TYPE'] = 'pod'
        self.assertEqual(load_from_env(self.env).default_target_type, 'ip')

    def test_missing_cluster_name(self):
        del self.env['K8S_CLUSTER_NAME']
        with self.assertRaises(ConfigurationError) as cm:
            load_from_env(self.env)
        self.assertIn('K8S_CLUSTER_NAME', str(cm.exception))

    def test_missing_vpc_id(self):
        del self.env['AWS_VPC_ID']
        with self.assertRaises(ConfigurationError):
            load_from_env(self.env)

    def test_name_prefix_too_long(self):
        self.env['NLB_NAME_PREFIX'] = 'a' * 13
        with self.assertRaises(ConfigurationError):
            load_from_env(self.env)

    def test_invalid_target_type(self):
        self.env['NLB_TARGET_TYPE'] = 'lambda'
        with self.assertRaises(ConfigurationError):
            load_from_env(self.env)

    def test_invalid_backend_protocol(self):
        self.env['NLB_BACKEND_PROTOCOL'] = 'TLS'
        with self.assertRaises(ConfigurationError):
            load_from_env(self.env)

    def test_invalid_bool(self):
        self.env['ENABLE_WEBHOOK'] = 'maybe'
        with self.assertRaises(ConfigurationError):
            load_from_env(self.env)

    def test_invalid_number(self):
        self.env['MAX_CONCURRENT_RECONCILES'] = 'many'
        with self.assertRaises(ConfigurationError):
            load_from_env(self.env)

    def test_zero_workers_rejected(self):
        self.env['MAX_CONCURRENT_RECONCILES'] = '0'
        with self.assertRaises(ConfigurationError):
            load_from_env(self.env)

    def test_configuration_error_is_permanent(self):
        del self.env['AWS_VPC_ID']
        with self.assertRaises(kopf.PermanentError):
            load_from_env(self.env)


class TestHelpers(unittest.TestCase):
    def test_parse_key_values(self):
        self.assertEqual(parse_key_values('a=1,b=2'), {'a': '1', 'b': '2'})
        self.assertEqual(parse_key_values(''), {})
        self.assertEqual(parse_key_values(None), {})

    def test_parse_key_values_rejects_bad_pairs(self):
        with self.assertRaises(ConfigurationError) as cm:
            parse_key_values('a=1,broken,c=d=e')
        self.assertIn('broken', str(cm.exception))
        self.assertIn('c=d=e', str(cm.exception))

    def test_generate_name_prefix_is_stable(self):
        self.assertEqual(generate_name_prefix('cluster'), generate_name_prefix('cluster'))
        self.assertNotEqual(generate_name_prefix('cluster'), generate_name_prefix('other'))

    def test_validate_keeps_explicit_prefix(self):
        cfg = Configuration(cluster_name='c', vpc_id='vpc-1', name_prefix='abc').validate()
        self.assertEqual(cfg.name_prefix, 'abc')


if __name__ == '__main__':
    unittest.main()
