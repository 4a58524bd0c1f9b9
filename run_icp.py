#!/usr/bin/env python3
"""
Command-line interface for ICP point cloud registration.

Registers a reading cloud onto a reference cloud with either the default
chain or one described in a YAML file, and lists the registered components
with their parameters.
"""

import argparse
import logging
import os
import pickle
import sys

import numpy as np

from pointmatch import ICP, Kind, PointCloud, registry, setup_logging
from pointmatch.errors import PointMatchError


def save_result(filepath, result):
    """Save registration results to file."""
    data = {
        'transformation': result.transformation,
        'iterations': result.iterations,
        'termination': result.termination.value,
        'residual': result.residual,
        'mean_distances': result.mean_distances,
        'intermediate_transforms': result.intermediate_transforms,
    }
    with open(filepath, 'wb') as f:
        pickle.dump(data, f)
    print(f"Results saved to {filepath}")


def load_result(filepath):
    """Load previously saved registration results."""
    if not os.path.exists(filepath):
        print(f"File {filepath} not found")
        return None
    with open(filepath, 'rb') as f:
        return pickle.load(f)


def run_register(args):
    icp = ICP()
    if args.config:
        with open(args.config) as f:
            icp.load_from_yaml(f)
    else:
        icp.set_default()

    reading = PointCloud.from_file(args.reading)
    reference = PointCloud.from_file(args.reference)
    print(f"Reading points: {len(reading)}")
    print(f"Reference points: {len(reference)}")

    initial = np.loadtxt(args.initial) if args.initial else None
    result = icp.register(reading, reference, initial)

    print(f"\nTermination: {result.termination.value} after {result.iterations} iterations")
    if result.mean_distances:
        print(f"Final mean distance: {result.mean_distances[-1]:.6f}")
    print("\nTransformation matrix:")
    print(result.transformation)

    if args.output:
        np.savetxt(args.output, result.transformation)
    if args.save:
        save_result(args.save, result)


def run_list(args):
    kinds = [args.kind] if args.kind else Kind.ALL
    for kind in kinds:
        print(f"{kind}:")
        for name in registry.names(kind):
            print(f"  {name}")
            for param, default, doc in registry.describe(kind, name):
                print(f"      {param} (default: {default}) - {doc}")


def run_load(args):
    result = load_result(args.file)
    if result is None:
        return
    print(f"Termination: {result['termination']} after {result['iterations']} iterations")
    print("Transformation matrix:")
    print(result['transformation'])


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='ICP Point Cloud Registration',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Default chain
  python run_icp.py register scan1.ply scan2.ply

  # Chain from a YAML file, transformation written to a text file
  python run_icp.py register scan1.ply scan2.ply --config icp.yaml --output T.txt

  # Registered components and their parameters
  python run_icp.py list --kind OutlierFilter
        """
    )
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    subparsers = parser.add_subparsers(dest='mode', help='Command')

    register_parser = subparsers.add_parser('register', help='Register a reading onto a reference')
    register_parser.add_argument('reading', help='Path to the point cloud to move')
    register_parser.add_argument('reference', help='Path to the point cloud to align onto')
    register_parser.add_argument('--config', help='YAML description of the ICP chain')
    register_parser.add_argument('--initial', help='Text file holding the initial transformation')
    register_parser.add_argument('--output', help='Write the transformation to this text file')
    register_parser.add_argument('--save', help='Pickle the full result to this file')

    list_parser = subparsers.add_parser('list', help='List registered components')
    list_parser.add_argument('--kind', choices=Kind.ALL, help='Only list this component kind')

    load_parser = subparsers.add_parser('load', help='Show saved results')
    load_parser.add_argument('--file', default='icp_results.pkl', help='Path to saved results file')

    args = parser.parse_args(argv)
    setup_logging(getattr(logging, args.log_level))

    if args.mode is None:
        parser.print_help()
        return 1

    handlers = {'register': run_register, 'list': run_list, 'load': run_load}
    try:
        handlers[args.mode](args)
    except PointMatchError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
