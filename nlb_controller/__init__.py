"""Kubernetes controller that manages AWS Network Load Balancers for Services."""

import logging
import os

# Configure structured logging
logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# boto logs every request at INFO
logging.getLogger('botocore').setLevel(logging.WARNING)
logging.getLogger('urllib3').setLevel(logging.WARNING)
