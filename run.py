#!/usr/bin/env python3
"""
ECI Profile - Entry Point

Admission webhook that steers Pods between normal and virtual nodes
according to cluster-scoped Selector objects, and re-patches Pods the
scheduler could not place.

Usage:
    python run.py [--kubeconfig PATH] [--cacert PATH --cakey PATH] [--verbose]
"""

import argparse
import logging
import signal
import sys

from eci_profile.cert import Issuer
from eci_profile.config import DEFAULT_CLIENT_BURST, DEFAULT_CLIENT_QPS, SERVICE_NAMESPACE, WEBHOOK_PORT
from eci_profile.controller import ProfileController
from eci_profile.errors import BootstrapError
from eci_profile.kube import build_api_client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="ECI Profile - steer Pods between normal and virtual nodes"
    )
    parser.add_argument(
        "--kubeconfig",
        default="",
        help="Path to a kubeconfig. Only required if out-of-cluster."
    )
    parser.add_argument(
        "--master",
        default="",
        help="The address of the Kubernetes API server. Overrides any value in kubeconfig."
    )
    parser.add_argument(
        "--cacert",
        default="",
        help="Path to CA cert file in PEM format, used to sign the webhook serving cert"
    )
    parser.add_argument(
        "--cakey",
        default="",
        help="Path to CA key file in PEM format"
    )
    parser.add_argument(
        "--client-qps",
        type=float,
        default=DEFAULT_CLIENT_QPS,
        help=f"Kubernetes client maximum QPS for throttle (default: {DEFAULT_CLIENT_QPS:g})"
    )
    parser.add_argument(
        "--client-burst",
        type=int,
        default=DEFAULT_CLIENT_BURST,
        help=f"Kubernetes client maximum burst for throttle (default: {DEFAULT_CLIENT_BURST})"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=WEBHOOK_PORT,
        help=f"Webhook HTTPS port (default: {WEBHOOK_PORT})"
    )
    parser.add_argument(
        "--service-namespace",
        default=SERVICE_NAMESPACE,
        help=f"Namespace of the webhook Service (default: {SERVICE_NAMESPACE})"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose/debug logging"
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    # Set log level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # SIGTERM stops the service the same way Ctrl+C does
    signal.signal(signal.SIGTERM, signal.default_int_handler)

    try:
        api_client = build_api_client(
            kubeconfig=args.kubeconfig,
            master=args.master,
            qps=args.client_qps,
            burst=args.client_burst
        )
        issuer = Issuer.from_files(args.cacert, args.cakey)
        controller = ProfileController(
            api_client,
            issuer,
            port=args.port,
            service_namespace=args.service_namespace
        )
    except BootstrapError as e:
        logger.error(f"Failed to create ECI profile service: {e}")
        sys.exit(1)

    try:
        controller.run()
    except KeyboardInterrupt:
        controller.stop()
        logger.info("ECI profile service stopped")
        sys.exit(0)
    except BootstrapError as e:
        logger.error(f"Run ECI profile service failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
