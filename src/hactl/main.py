#!/usr/bin/env python3
"""
Home Assistant Instance CLI

A command-line interface for managing Home Assistant Instance resources.
"""

import argparse
import json
import sys

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from home_assistant_operator import crd
from home_assistant_operator.templates import desired_manifests


def load_kubeconfig():
    """Load Kubernetes configuration."""
    try:
        config.load_incluster_config()
        return True
    except config.ConfigException:
        try:
            config.load_kube_config()
            return True
        except Exception as e:
            print(f"Error loading Kubernetes config: {e}", file=sys.stderr)
            return False


def parse_pairs(pairs, option):
    """Turn ``KEY=VALUE`` arguments into a dict."""
    result = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"{option} expects KEY=VALUE, got {pair!r}")
        result[key] = value
    return result


def build_spec(args):
    """Build an Instance spec from command-line arguments."""
    spec = {}
    if args.version:
        spec["version"] = args.version
    labels = parse_pairs(args.label, "--label")
    if labels:
        spec["labels"] = labels
    annotations = parse_pairs(args.annotation, "--annotation")
    if annotations:
        spec["annotations"] = annotations
    env = parse_pairs(args.env, "--env")
    if env:
        spec["env"] = [{"name": key, "value": value} for key, value in env.items()]
    if args.host_network:
        spec["hostNetwork"] = True

    if args.ingress_host:
        ingress = {"enabled": True, "host": args.ingress_host}
        if args.tls_secret:
            ingress["secretName"] = args.tls_secret
        if args.ingress_class:
            ingress["ingressClassName"] = args.ingress_class
        spec["ingress"] = ingress

    persistence = {}
    if args.size:
        persistence["size"] = args.size
    if args.storage_class:
        persistence["storageClassName"] = args.storage_class
    if persistence:
        spec["persistence"] = persistence
    return spec


def instance_body(name, namespace, spec):
    return {
        "apiVersion": crd.API_VERSION,
        "kind": crd.KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def print_api_error(action, e):
    print(f"✗ Failed to {action}: {e.reason}", file=sys.stderr)
    if e.body:
        try:
            error_body = json.loads(e.body)
        except ValueError:
            return
        if "message" in error_body:
            print(f"  {error_body['message']}", file=sys.stderr)


def cmd_create(args):
    """Create an Instance."""
    try:
        spec = build_spec(args)
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(2)

    if not load_kubeconfig():
        sys.exit(1)

    custom_api = client.CustomObjectsApi()
    try:
        custom_api.create_namespaced_custom_object(
            group=crd.GROUP,
            version=crd.VERSION,
            namespace=args.namespace,
            plural=crd.PLURAL,
            body=instance_body(args.name, args.namespace, spec),
        )
    except ApiException as e:
        if e.status == 409:
            print(f"✗ Instance '{args.name}' already exists", file=sys.stderr)
        else:
            print_api_error("create Instance", e)
        sys.exit(1)

    print(f"✓ Instance '{args.name}' created")
    print(f"Watch status: kubectl get instances.{crd.GROUP} {args.name} -n {args.namespace} -w")


def cmd_get(args):
    """Get Instance status."""
    if not load_kubeconfig():
        sys.exit(1)

    custom_api = client.CustomObjectsApi()

    try:
        instance = custom_api.get_namespaced_custom_object(
            group=crd.GROUP,
            version=crd.VERSION,
            namespace=args.namespace,
            plural=crd.PLURAL,
            name=args.name,
        )
    except ApiException as e:
        if e.status == 404:
            print(f"✗ Instance '{args.name}' not found", file=sys.stderr)
        else:
            print(f"✗ Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.output == "json":
        print(json.dumps(instance, indent=2))
        return

    spec = instance.get("spec", {})
    status = instance.get("status", {})
    ingress = spec.get("ingress", {})
    persistence = spec.get("persistence", {})

    print(f"Instance: {args.name}")
    print(f"Namespace: {args.namespace}")
    print("\nSpec:")
    print(f"  Version: {spec.get('version') or 'N/A'}")
    print(f"  Host network: {spec.get('hostNetwork', False)}")
    print(f"  Ingress: {ingress.get('host', 'N/A') if ingress.get('enabled') else 'disabled'}")
    print(f"  Storage: {persistence.get('size') or crd.DEFAULT_STORAGE_SIZE}")

    print("\nStatus:")
    print(f"  Phase: {status.get('phase', 'Unknown')}")
    print(f"  Reason: {status.get('reason', 'N/A')}")
    print(f"  Message: {status.get('message', 'N/A')}")


def cmd_list(args):
    """List Instances."""
    if not load_kubeconfig():
        sys.exit(1)

    custom_api = client.CustomObjectsApi()

    try:
        if args.namespace:
            response = custom_api.list_namespaced_custom_object(
                group=crd.GROUP,
                version=crd.VERSION,
                namespace=args.namespace,
                plural=crd.PLURAL,
            )
        else:
            response = custom_api.list_cluster_custom_object(
                group=crd.GROUP,
                version=crd.VERSION,
                plural=crd.PLURAL,
            )
    except ApiException as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        sys.exit(1)

    items = response.get("items", [])
    if not items:
        print("No Instances found.")
        return

    print(f"{'NAME':<30} {'NAMESPACE':<20} {'PHASE':<10} {'VERSION':<15} {'HOST':<30}")
    print("-" * 105)

    for item in items:
        metadata = item.get("metadata", {})
        spec = item.get("spec", {})
        status = item.get("status", {})
        ingress = spec.get("ingress", {})

        name = metadata.get("name", "N/A")
        namespace = metadata.get("namespace", "N/A")
        phase = status.get("phase", "Unknown")
        version = spec.get("version") or "N/A"
        host = ingress.get("host", "-") if ingress.get("enabled") else "-"

        print(f"{name:<30} {namespace:<20} {phase:<10} {version:<15} {host:<30}")


def cmd_delete(args):
    """Delete an Instance."""
    if not load_kubeconfig():
        sys.exit(1)

    custom_api = client.CustomObjectsApi()

    try:
        custom_api.delete_namespaced_custom_object(
            group=crd.GROUP,
            version=crd.VERSION,
            namespace=args.namespace,
            plural=crd.PLURAL,
            name=args.name,
        )
    except ApiException as e:
        if e.status == 404:
            print(f"⚠ Instance '{args.name}' not found (may already be deleted)")
            return
        print_api_error("delete Instance", e)
        sys.exit(1)

    print(f"✓ Instance '{args.name}' deleted, the operator removes its resources")


def cmd_render(args):
    """Print the resources the operator would create for an Instance."""
    try:
        spec = build_spec(args)
        manifests = desired_manifests(args.name, args.namespace, spec)
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(2)

    api_client = client.ApiClient()
    print(json.dumps([api_client.sanitize_for_serialization(m) for m in manifests], indent=2))


def add_spec_arguments(parser):
    parser.add_argument("--version", help="Home Assistant image tag (default: stable)")
    parser.add_argument(
        "--env", action="append", metavar="KEY=VALUE", help="Environment variable (repeatable)"
    )
    parser.add_argument(
        "--label", action="append", metavar="KEY=VALUE", help="Extra label (repeatable)"
    )
    parser.add_argument(
        "--annotation", action="append", metavar="KEY=VALUE", help="Extra annotation (repeatable)"
    )
    parser.add_argument(
        "--host-network", action="store_true", help="Run the pod in the host network"
    )
    parser.add_argument("--ingress-host", help="Enable an ingress for this host")
    parser.add_argument("--tls-secret", help="TLS secret for the ingress host")
    parser.add_argument("--ingress-class", help="Ingress class name")
    parser.add_argument("--size", help=f"Config volume size (default: {crd.DEFAULT_STORAGE_SIZE})")
    parser.add_argument("--storage-class", help="Storage class of the config volume")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="hactl",
        description="Manage Home Assistant Instance resources",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create an instance reachable through an ingress
  %(prog)s create home --version 2024.6 --ingress-host home.example.com --tls-secret home-tls

  # Show what the operator will create
  %(prog)s render home --host-network --size 5Gi

  # Get instance details
  %(prog)s get home

  # List all instances
  %(prog)s list

  # Delete an instance and its resources
  %(prog)s delete home
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    create_parser = subparsers.add_parser("create", help="Create an Instance")
    create_parser.add_argument("name", help="Instance name")
    create_parser.add_argument(
        "--namespace", "-n", default="default", help="Kubernetes namespace"
    )
    add_spec_arguments(create_parser)
    create_parser.set_defaults(func=cmd_create)

    get_parser = subparsers.add_parser("get", help="Get Instance status")
    get_parser.add_argument("name", help="Instance name")
    get_parser.add_argument(
        "--namespace", "-n", default="default", help="Kubernetes namespace"
    )
    get_parser.add_argument(
        "--output", "-o", choices=["text", "json"], default="text", help="Output format"
    )
    get_parser.set_defaults(func=cmd_get)

    list_parser = subparsers.add_parser("list", help="List Instances")
    list_parser.add_argument(
        "--namespace", "-n", default=None, help="Kubernetes namespace (default: all)"
    )
    list_parser.set_defaults(func=cmd_list)

    delete_parser = subparsers.add_parser("delete", help="Delete an Instance")
    delete_parser.add_argument("name", help="Instance name")
    delete_parser.add_argument(
        "--namespace", "-n", default="default", help="Kubernetes namespace"
    )
    delete_parser.set_defaults(func=cmd_delete)

    render_parser = subparsers.add_parser(
        "render", help="Print the resources an Instance results in"
    )
    render_parser.add_argument("name", help="Instance name")
    render_parser.add_argument(
        "--namespace", "-n", default="default", help="Kubernetes namespace"
    )
    add_spec_arguments(render_parser)
    render_parser.set_defaults(func=cmd_render)

    return parser


def main(argv=None):
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
