"""
Main controller module that initializes and runs the NLB Service operator.

Run with: kopf run -m nlb_controller.controller --all-namespaces
"""

from . import handlers  # noqa: F401  registers the kopf handlers on import
