#!/usr/bin/env python3
# power.py - vmops Deploy Power Stage
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Power on, connect NICs and wait for VMware Tools

import os
import sys
import logging

# Add repository root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Default logging level
logging.basicConfig(level=logging.WARNING)

#==============================================================================
# MODULE CONFIGURATION
#==============================================================================

MODULE_NAME = 'power'
MODULE_DESCRIPTION = 'Power on VM and wait for guest tools'

#==============================================================================
# MAIN FUNCTION
#==============================================================================

def main(opf=None, ctx=None, dry_run=False):
    """
    Main entry point for the power stage

    :param opf: opsfunctions module (will be imported if None)
    :param ctx: DeployContext
    :param dry_run: Whether to skip actual changes
    :return: True on success
    :raises RuntimeError: If the VM will not power on or tools never start
    """
    if opf is None:
        import opsfunctions as opf

    opf.write_output(f'Starting {MODULE_NAME}: {MODULE_DESCRIPTION}')

    options = ctx.config.options
    vm_name = ctx.config.vmware.vm_name

    if not options.power_on:
        opf.write_output('PowerOn is false - leaving VM powered off')
        return True

    vm = ctx.vm or opf.get_vm(ctx.si, vm_name)
    if vm is None:
        if dry_run:
            opf.write_output(f'Would power on {vm_name} once it exists')
            return True
        raise RuntimeError(f'VM {vm_name} not found')
    ctx.vm = vm

    if dry_run:
        opf.write_output(f'Would power on {vm_name} and wait {options.tools_wait_seconds}s for tools')
        return True

    if not opf.start_vm(vm):
        raise RuntimeError(f'Could not power on {vm_name}')

    if options.ensure_nic_connected:
        for adapter in opf.get_network_adapter(vm):
            if not adapter.connectable.connected:
                # a NIC can only be connected once the VM is running
                opf.set_network_adapter_connection(vm, adapter, True)

    if not opf.wait_for_tools(vm, timeout=options.tools_wait_seconds):
        raise RuntimeError(f'VMware Tools did not start on {vm_name} within {options.tools_wait_seconds} seconds')
    opf.write_output(f'VMware Tools running on {vm_name}')

    if options.post_power_on_delay > 0:
        opf.write_output(f'Waiting {options.post_power_on_delay}s for the guest to settle')
        opf.ops_sleep(options.post_power_on_delay)

    ctx.results['power'] = 'poweredOn'
    return True


#==============================================================================
# STANDALONE EXECUTION
#==============================================================================

if __name__ == '__main__':
    import vmdeploy
    sys.exit(vmdeploy.main(sys.argv[1:] + ['--stage', MODULE_NAME]))
