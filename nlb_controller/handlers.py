import contextvars
import kopf
import kubernetes
import logging
import threading
from typing import Dict, Any

from .aws.client import get_credentials
from .aws.cloud import Cloud
from .config import load_from_env
from .context import ReconcileContext
from .generator import NameTagGenerator
from .reconciler import Reconciler
from .store import Store
from .triggers import (
    EVENT_DELETED,
    configmap_event_keys,
    endpoints_event_keys,
    node_event_keys,
    qualifying_service_keys,
    service_event_keys,
)
from .webhook.server import start_webhook_server
from .workqueue import RateLimitingQueue, run_worker

logger = logging.getLogger(__name__)

WORKER_JOIN_TIMEOUT = 10  # seconds


def load_kube_config():
    try:
        kubernetes.config.load_incluster_config()
    except kubernetes.config.ConfigException:
        # Fallback to kubeconfig for local development
        kubernetes.config.load_kube_config()


def start_thread(target, name: str, *args) -> threading.Thread:
    """
    Start a daemon thread running target(*args) in a copy of the current
    context, so kopf.info/kopf.warn can post events from it.
    """
    thread = threading.Thread(target=contextvars.copy_context().run, args=(target,) + args,
                              name=name, daemon=True)
    thread.start()
    return thread


def sync_service(memo, key: str) -> None:
    """Run one reconcile of key and report a failure as a Warning event on the Service."""
    ctx = ReconcileContext(key, timeout=memo.cfg.reconcile_timeout, stopped=memo.stopped)
    try:
        memo.reconciler.sync(ctx, key)
    except Exception as e:
        ctx.warn("ERROR", f"failed to reconcile service {key} due to {str(e)}")
        raise


def periodic_resync(memo):
    """
    Periodically enqueue every Service of our class, so drift in AWS is
    repaired even without cluster events.
    The interval can be configured using the RESYNC_INTERVAL environment variable (in seconds).
    """
    interval = memo.cfg.resync_interval
    logger.info(f"Starting periodic resync with interval of {interval} seconds")
    while not memo.stopped.wait(interval):
        keys = qualifying_service_keys(memo.store)
        logger.info(f"Periodic resync of {len(keys)} services")
        for key in keys:
            memo.queue.add(key)


def enqueue(memo, keys):
    for key in keys:
        memo.queue.add(key)


@kopf.on.startup()
def startup_fn(logger, memo: kopf.Memo, **kwargs):
    """Load configuration, build the reconciler and start workers, resync and webhook."""
    try:
        cfg = load_from_env()
    except kopf.PermanentError as e:
        logger.error(f"Invalid controller configuration: {str(e)}")
        raise

    load_kube_config()

    if get_credentials() is not None:
        logger.info("AWS credentials resolved from the credential chain")

    store = Store(cfg)
    cloud = Cloud(region=cfg.region)
    memo.cfg = cfg
    memo.store = store
    memo.queue = RateLimitingQueue()
    memo.stopped = threading.Event()
    memo.reconciler = Reconciler(store, cloud, NameTagGenerator.from_config(cfg),
                                 core_v1=kubernetes.client.CoreV1Api())

    memo.workers = [
        start_thread(run_worker, f"reconcile-worker-{i}", memo.queue, lambda key: sync_service(memo, key))
        for i in range(cfg.max_concurrent_reconciles)
    ]
    logger.info(f"Started {len(memo.workers)} reconcile workers")

    start_thread(periodic_resync, "periodic-resync", memo)
    logger.info("Started periodic resync thread")

    if cfg.enable_webhook:
        try:
            webhook_thread = threading.Thread(target=start_webhook_server, args=(cfg,), daemon=True)
            webhook_thread.start()
            logger.info("Started webhook server in background thread")
        except Exception as e:
            logger.error(f"Failed to start webhook server: {str(e)}", exc_info=True)
            raise kopf.PermanentError("Failed to start webhook server")


@kopf.on.cleanup()
def cleanup_fn(logger, memo: kopf.Memo, **kwargs):
    """Stop workers; in-flight reconciles abort at their next cloud call."""
    memo.stopped.set()
    memo.queue.shut_down()
    for worker in memo.workers:
        worker.join(WORKER_JOIN_TIMEOUT)
    logger.info("Reconcile workers stopped")


@kopf.on.event('v1', 'services')
def service_event_fn(event: Dict[str, Any], memo: kopf.Memo, **kwargs):
    obj = event['object']
    if event['type'] == EVENT_DELETED:
        old = memo.store.delete_service(obj)
    else:
        old = memo.store.upsert_service(obj)
    enqueue(memo, service_event_keys(event['type'], old, obj, memo.cfg.service_class))


@kopf.on.event('v1', 'endpoints')
def endpoints_event_fn(event: Dict[str, Any], memo: kopf.Memo, **kwargs):
    obj = event['object']
    if event['type'] == EVENT_DELETED:
        old = memo.store.delete_endpoints(obj)
    else:
        old = memo.store.upsert_endpoints(obj)
    enqueue(memo, endpoints_event_keys(event['type'], old, obj, memo.store))


@kopf.on.event('v1', 'nodes')
def node_event_fn(event: Dict[str, Any], memo: kopf.Memo, **kwargs):
    obj = event['object']
    if event['type'] == EVENT_DELETED:
        old = memo.store.delete_node(obj)
    else:
        old = memo.store.upsert_node(obj)
    enqueue(memo, node_event_keys(event['type'], old, obj, memo.store))


@kopf.on.event('v1', 'pods')
def pod_event_fn(event: Dict[str, Any], memo: kopf.Memo, **kwargs):
    if event['type'] == EVENT_DELETED:
        memo.store.delete_pod(event['object'])
    else:
        memo.store.upsert_pod(event['object'])


@kopf.on.event('v1', 'configmaps')
def configmap_event_fn(event: Dict[str, Any], memo: kopf.Memo, **kwargs):
    enqueue(memo, configmap_event_keys(event['type'], event['object'], memo.store))
