#!/usr/bin/env python3
# decommission.py - vmops VM Decommission Tool
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Retire a VM under a change number: notes, shutdown, NICs, AD object, tags, then delete or rename

"""
Decommission a virtual machine

Steps (each logged, each best effort unless noted):
1. Operator retypes the VM name to confirm (skipped with --yes)
2. Append the change number and date to the VM notes
3. Guest shutdown, hard power-off if the guest does not stop (required)
4. Disconnect every network adapter
5. Remove the computer object from Active Directory through a domain controller
6. Detach all vSphere tags
7. Destroy the VM (--delete) or rename it <name>-DECOM-<yyyymmdd> (required)

Usage:
    python3 decommission.py --vm WEB01 --vcenter vc01.corp.example.com --change CHG0012345
"""

import os
import sys
import datetime
import argparse
import logging
from typing import Dict

import requests
from pyVmomi import vmodl

# Add repository root for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import opsfunctions as opf
from deployconfig import CHG_PATTERN
from vcrest import VcRestSession, VcRestError

SHUTDOWN_TIMEOUT = 300  # seconds


def decom_name(vm_name: str, when: datetime.date = None) -> str:
    """Name given to a retired VM that is kept rather than deleted"""
    when = when or datetime.date.today()
    return f'{vm_name}-DECOM-{when.strftime("%Y%m%d")}'


def confirm(vm_name: str, input_func=input) -> bool:
    """Ask the operator to retype the VM name exactly"""
    answer = input_func(f'Type the VM name ({vm_name}) to confirm decommission: ')
    return answer.strip() == vm_name


def detach_all_tags(rest, vm) -> bool:
    """Detach every tag from the VM; True if all were detached"""
    ok = True
    for tag_id in rest.list_attached_tags(vm._moId):
        try:
            rest.detach_tag(tag_id, vm._moId)
            opf.write_output(f'Detached tag {tag_id} from {vm.name}')
        except VcRestError as e:
            opf.write_output(f'Could not detach tag {tag_id} from {vm.name}: {e}')
            ok = False
    return ok


def decommission(si, vm, change, ad_server='', delete=False, dry_run=False, rest=None) -> Dict[str, bool]:
    """
    Run the decommission steps against one VM

    :param si: ServiceInstance
    :param vm: vim.VirtualMachine
    :param change: Change request number
    :param ad_server: Domain controller for the AD cleanup ('' to skip)
    :param delete: Destroy the VM instead of renaming it
    :param dry_run: Log what would be done
    :param rest: Logged-in VcRestSession for tag cleanup, or None to skip
    :return: dict of step name -> success
    """
    name = vm.name
    today = datetime.date.today()
    steps = {}

    if dry_run:
        opf.write_output(f'Would annotate, power off and disconnect {name}')
        if ad_server:
            opf.write_output(f'Would remove {name} from AD via {ad_server}')
        opf.write_output(f'Would detach tags and {"delete" if delete else "rename to " + decom_name(name, today)}')
        return {'dry_run': True}

    try:
        current = vm.config.annotation or ''
        line = f'Decommissioned {today.isoformat()} - {change}'
        opf.set_annotation(vm, f'{current}\n{line}'.strip())
        opf.write_output(f'Annotated {name}: {line}')
        steps['annotate'] = True
    except Exception as e:
        opf.write_output(f'Could not annotate {name}: {e}')
        steps['annotate'] = False

    steps['power_off'] = opf.stop_vm(vm, timeout=SHUTDOWN_TIMEOUT)
    if not steps['power_off']:
        opf.write_output(f'{name} is still running - stopping before destructive steps')
        return steps

    steps['disconnect'] = all([opf.set_network_adapter_connection(vm, adapter, False)
                               for adapter in opf.get_network_adapter(vm)])

    if ad_server:
        try:
            steps['ad_cleanup'] = opf.remove_ad_computer(ad_server, name, opf.aduser, opf.get_password('ad', prompt=True))
        except Exception as e:
            opf.write_output(f'AD cleanup for {name} via {ad_server} failed: {e}')
            steps['ad_cleanup'] = False

    if rest is not None:
        try:
            steps['tags'] = detach_all_tags(rest, vm)
        except (VcRestError, requests.exceptions.RequestException) as e:
            opf.write_output(f'Could not list tags on {name}: {e}')
            steps['tags'] = False

    try:
        if delete:
            opf.wait_task(vm.Destroy_Task(), description=f'Destroy {name}')
            opf.write_output(f'Deleted {name}')
            steps['delete'] = True
        else:
            new_name = decom_name(name, today)
            opf.wait_task(vm.Rename_Task(newName=new_name), description=f'Rename {name}')
            opf.write_output(f'Renamed {name} to {new_name}')
            steps['rename'] = True
    except (RuntimeError, vmodl.MethodFault) as e:
        opf.write_output(f'Final step for {name} failed: {getattr(e, "msg", None) or e}')
        steps['delete' if delete else 'rename'] = False

    return steps


def main(argv=None):
    parser = argparse.ArgumentParser(description='vmops VM decommission')
    parser.add_argument('--vm', required=True, help='VM name')
    parser.add_argument('--vcenter', required=True, help='vCenter hostname')
    parser.add_argument('--change', required=True, help='Change request number (CHG...)')
    parser.add_argument('--ad-server', help='Domain controller for AD cleanup (default [AD] server)')
    parser.add_argument('--delete', action='store_true', help='Destroy the VM instead of renaming it')
    parser.add_argument('--dry-run', action='store_true', help='Show what would be done')
    parser.add_argument('--yes', '-y', action='store_true', help='Skip the name confirmation prompt')
    parser.add_argument('--ini', help='Path to vmops.ini')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    change = args.change.strip().upper()
    if not CHG_PATTERN.match(change):
        print(f'Change number {args.change!r} must look like CHG0012345')
        return 1

    opf.init(config_path=args.ini)

    if not args.yes and not args.dry_run and not confirm(args.vm):
        opf.write_output('Confirmation did not match - nothing changed')
        return 1

    si = opf.connect_vc(args.vcenter, opf.vcuser, opf.get_password('vcenter', prompt=True))
    if si is None:
        return 1

    rest = None
    try:
        vm = opf.get_vm(si, args.vm)
        if vm is None:
            opf.write_output(f'VM {args.vm} not found on {args.vcenter}')
            return 1
        if vm.config.template:
            opf.write_output(f'{args.vm} is a template - refusing to decommission it')
            return 1

        if not args.dry_run:
            rest = VcRestSession(args.vcenter, opf.vcuser, opf.get_password('vcenter'), verify=opf.verify_ssl)
            try:
                rest.login()
            except (VcRestError, requests.exceptions.RequestException) as e:
                opf.write_output(f'vCenter REST session unavailable, tags stay attached: {e}')
                rest = None

        opf.write_output(f'Decommissioning {args.vm} under {change}')
        steps = decommission(si, vm, change, ad_server=args.ad_server or opf.adserver,
                             delete=args.delete, dry_run=args.dry_run, rest=rest)
    finally:
        if rest is not None:
            rest.logout()
        opf.disconnect_vcenters()

    for step, ok in steps.items():
        opf.write_output(f'  {step:<12} {"OK" if ok else "FAILED"}')

    required = ('power_off', 'delete' if args.delete else 'rename')
    if args.dry_run or all(steps.get(step) for step in required):
        return 0
    return 1


if __name__ == '__main__':
    sys.exit(main())
