#!/usr/bin/env python3
# tag_report.py - vmops VM Tag Report
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# List VMs with their folder, power state, guest OS and attached tags as CSV or JSON

import os
import sys
import re
import csv
import json
import argparse
import logging
from typing import Dict, List

import requests
from pyVmomi import vim

# Add repository root for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import opsfunctions as opf
from vcrest import VcRestSession, VcRestError

COLUMNS = ['name', 'power_state', 'guest_os', 'folder', 'tags']


def folder_path(vm) -> str:
    """Slash-separated VM folder path below the datacenter's vm folder"""
    parts = []
    parent = vm.parent
    while isinstance(parent, vim.Folder) and not isinstance(parent.parent, vim.Datacenter):
        parts.append(parent.name)
        parent = parent.parent
    return '/'.join(reversed(parts))


def collect_rows(si, rest, name_filter: str = '') -> List[Dict[str, str]]:
    """
    Build one row per VM (templates excluded), sorted by VM name

    :param si: ServiceInstance
    :param rest: Logged-in VcRestSession
    :param name_filter: Regular expression matched against the VM name
    """
    pattern = re.compile(name_filter, re.IGNORECASE) if name_filter else None
    rows = []

    for vm, name in opf.get_all_objs(si.content, [vim.VirtualMachine]).items():
        if pattern and not pattern.search(name):
            continue
        try:
            if vm.config is None or vm.config.template:
                continue
            tags = rest.tag_names(vm._moId)
        except (VcRestError, requests.exceptions.RequestException) as e:
            opf.write_output(f'Could not read tags for {name}: {e}')
            tags = []
        rows.append({
            'name': name,
            'power_state': str(vm.runtime.powerState),
            'guest_os': vm.config.guestFullName or '',
            'folder': folder_path(vm),
            'tags': tags,
        })

    return sorted(rows, key=lambda r: r['name'].lower())


def write_csv(rows, stream):
    writer = csv.DictWriter(stream, fieldnames=COLUMNS, extrasaction='ignore', restval='')
    writer.writeheader()
    for row in rows:
        writer.writerow(dict(row, tags='; '.join(row['tags'])))


def write_json(rows, stream):
    json.dump(rows, stream, indent=2)
    stream.write('\n')


def main(argv=None):
    parser = argparse.ArgumentParser(description='vmops VM tag report')
    parser.add_argument('--vcenter', required=True, help='vCenter hostname')
    parser.add_argument('--output', '-o', help='Output file (default stdout)')
    parser.add_argument('--format', choices=['csv', 'json'], default='csv', help='Output format')
    parser.add_argument('--filter', default='', help='Regular expression on VM names')
    parser.add_argument('--ini', help='Path to vmops.ini')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        re.compile(args.filter)
    except re.error as e:
        print(f'Invalid --filter expression: {e}')
        return 1

    # keep stdout clean when the report goes there
    opf.init(config_path=args.ini, console=bool(args.output))

    si = opf.connect_vc(args.vcenter, opf.vcuser, opf.get_password('vcenter', prompt=True))
    if si is None:
        return 1

    try:
        with VcRestSession(args.vcenter, opf.vcuser, opf.get_password('vcenter'), verify=opf.verify_ssl) as rest:
            rows = collect_rows(si, rest, args.filter)
    except (VcRestError, requests.exceptions.RequestException) as e:
        opf.write_output(f'vCenter REST session failed: {e}')
        return 1
    finally:
        opf.disconnect_vcenters()

    writer = write_json if args.format == 'json' else write_csv
    if args.output:
        with open(args.output, 'w', newline='', encoding='utf-8') as f:
            writer(rows, f)
        opf.write_output(f'Wrote {len(rows)} VMs to {args.output}')
    else:
        writer(rows, sys.stdout)

    return 0


if __name__ == '__main__':
    sys.exit(main())
