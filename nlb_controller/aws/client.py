import boto3
from botocore.config import Config
import logging
import os
from botocore.exceptions import ClientError

from ..errors import CloudAPIError

# Constants
AWS_RETRY_ATTEMPTS = 3
AWS_CONNECT_TIMEOUT = 10  # seconds
AWS_READ_TIMEOUT = 30  # seconds

# Throttling and transient network errors are retried inside botocore;
# the reconcile loop itself never retries a failed call.
aws_config = Config(
    retries=dict(
        max_attempts=AWS_RETRY_ATTEMPTS,
        mode='standard'
    ),
    connect_timeout=AWS_CONNECT_TIMEOUT,
    read_timeout=AWS_READ_TIMEOUT
)

# Configure to use regional STS endpoints for IRSA
if os.environ.get('AWS_DEFAULT_REGION'):
    os.environ['AWS_STS_REGIONAL_ENDPOINTS'] = 'regional'

logger = logging.getLogger(__name__)

def get_credentials():
    """Get AWS credentials using the credential chain.

    Only used at startup to report whether credentials resolve; clients keep
    their own session so refreshed credentials are picked up.

    The chain will try:
    1. IRSA (IAM Roles for Service Accounts)
    2. EC2 Instance Profile (Node IAM Role)
    3. Environment variables
    4. Shared credentials file

    Returns:
        Credentials if found, None otherwise
    """
    try:
        session = boto3.Session()
        credentials = session.get_credentials()
        if credentials is None:
            logger.warning("No AWS credentials found in the credential chain")
            return None
        return credentials
    except Exception as e:
        logger.error(f"Error getting AWS credentials: {str(e)}")
        return None

def get_client(service_name, region=None):
    """Get an AWS client with retry configuration.

    The client resolves credentials through the session's credential chain,
    so refreshable credentials (IRSA web identity, instance profile) are
    renewed by botocore before they expire.

    Args:
        service_name (str): boto3 service name, e.g. 'elbv2'
        region (str, optional): AWS region to use. If not provided, uses default region.

    Returns:
        boto3.client: AWS client
    """
    # Use specified region or fall back to environment variable
    session = boto3.Session(region_name=region or os.environ.get('AWS_DEFAULT_REGION'))
    return session.client(service_name, config=aws_config)

def get_elbv2_client(region=None):
    return get_client('elbv2', region)

def get_ec2_client(region=None):
    return get_client('ec2', region)

def get_tagging_client(region=None):
    return get_client('resourcegroupstaggingapi', region)

def call_aws_operation(ctx, operation_func, **kwargs):
    """
    Issue a single AWS call after checking the reconcile context.

    Args:
        ctx: ReconcileContext gating the call (may be None)
        operation_func: bound boto3 client method
        **kwargs: request parameters

    Returns:
        The AWS response

    Raises:
        ReconcileCancelled: If the context deadline passed or the operator is stopping
        CloudAPIError: If the call failed
    """
    if ctx is not None:
        ctx.check()
    operation = getattr(operation_func, '__name__', 'aws operation')
    try:
        return operation_func(**kwargs)
    except ClientError as e:
        error = e.response.get('Error', {})
        logger.debug(f"AWS operation {operation} failed: {str(e)}")
        raise CloudAPIError(operation, error.get('Code', 'Unknown'), error.get('Message', str(e))) from e
