#!/usr/bin/env python3
# vmdeploy.py - vmops VM Deploy Orchestrator
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Deploy-type aware orchestrator: template, clone, hardware, power, AD join, tags

import datetime
import os
import sys
import logging
import argparse
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

# Import core functions
import opsfunctions as opf
from deployconfig import DeployConfig, load_deploy_config
from jsonconfig import ConfigError
from vcrest import VcRestSession, VcRestError
from Tools.deploytypes import DeployTypeLoader
from Tools.deploy_status import DeployStatus, STAGE_NAMES

DEPLOY_ROOT = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'Deploy')

# Exit codes
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PARTIAL = 2  # critical stages done, a best-effort stage failed


@dataclass
class DeployContext:
    """State shared by the stage modules of one deployment"""
    config: DeployConfig
    si: Any = None
    rest: Optional[VcRestSession] = None
    vm: Any = None
    template: Any = None
    status: Optional[DeployStatus] = None
    results: Dict[str, Any] = field(default_factory=dict)


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(description='vmops VM deployment')
    parser.add_argument('config', help='Deploy config JSON (comments and trailing commas allowed)')
    parser.add_argument('--type', '-t', default='FULL', type=str.upper,
                        choices=list(DeployTypeLoader.STAGE_SEQUENCE),
                        help='Deploy type (default FULL)')
    parser.add_argument('--stage', choices=list(STAGE_NAMES),
                        help='Run a single stage only')
    parser.add_argument('--dry-run', action='store_true',
                        help='Dry run - no actual changes')
    parser.add_argument('--resume', action='store_true',
                        help='Skip stages completed by a previous run for this VM')
    parser.add_argument('--no-prompt', action='store_true',
                        help='Never prompt; missing values fail validation')
    parser.add_argument('--vm-name', help='Override VMware.VMName')
    parser.add_argument('--change', help='Override ChangeRequestNumber')
    parser.add_argument('--ini', help='Path to vmops.ini')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output')
    return parser.parse_args(argv)


def open_rest_session(config: DeployConfig):
    """
    Log in to the vCenter REST API (best effort)

    :return: VcRestSession or None
    """
    rest = VcRestSession(config.vmware.vcsa, opf.vcuser, opf.get_password('vcenter'),
                         verify=opf.verify_ssl)
    try:
        opf.retry_call(rest.login, attempts=3, description=f'REST login to {config.vmware.vcsa}')
    except (VcRestError, requests.exceptions.RequestException) as e:
        opf.write_output(f'vCenter REST session unavailable: {e}')
        return None
    return rest


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    opf.init(config_path=args.ini)

    try:
        config = load_deploy_config(
            args.config,
            prompt=not args.no_prompt,
            overrides={'vm_name': args.vm_name, 'change_request_number': args.change})
    except ConfigError as e:
        opf.opsfail(f'Config error: {e}')

    vm_name = config.vmware.vm_name
    loader = DeployTypeLoader(args.type, DEPLOY_ROOT, opf.override_dir)
    info = loader.get_deploytype_info()
    opf.write_output(f'Deploy Type: {info["name"]} - {info["description"]}')
    opf.write_output(f'VM: {vm_name}  Change: {config.change_request_number or "(none)"}  '
                     f'Region: {config.region or "(none)"}')
    if args.dry_run:
        opf.write_output('DRY RUN - no changes will be made')

    stages = loader.get_stage_sequence()
    if args.stage and args.stage not in stages:
        stages.append(args.stage)
    status = DeployStatus(vm_name, stages, opf.statedir, change=config.change_request_number,
                          load_state=args.resume)

    si = opf.connect_vc(config.vmware.vcsa, opf.vcuser, opf.get_password('vcenter', prompt=not args.no_prompt))
    if si is None:
        status.set_failed(f'Cannot connect to {config.vmware.vcsa}')
        opf.opsfail(f'Cannot connect to {config.vmware.vcsa}')

    ctx = DeployContext(config=config, si=si, status=status)
    if info.get('needs_rest'):
        ctx.rest = open_rest_session(config)

    try:
        failed = loader.run_sequence(opf, ctx, dry_run=args.dry_run, status=status,
                                     resume=args.resume, only=args.stage)
    except Exception as e:
        status.set_failed(str(e))
        opf.write_output(status.summary())
        opf.opsfail(f'Deploy of {vm_name} failed: {e}')
    finally:
        if ctx.rest is not None:
            ctx.rest.logout()
        opf.disconnect_vcenters()

    status.set_complete()
    opf.write_output(status.summary())

    # Calculate and log runtime
    delta = datetime.datetime.now() - opf.start_time
    run_mins = "{0:.2f}".format(delta.total_seconds() / 60)
    if failed:
        opf.write_output(f'Deploy of {vm_name} finished with failed stages {failed} - runtime was {run_mins} minutes')
        return EXIT_PARTIAL

    opf.write_output(f'Deploy of {vm_name} finished - runtime was {run_mins} minutes')
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
