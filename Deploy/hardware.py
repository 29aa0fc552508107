#!/usr/bin/env python3
# hardware.py - vmops Deploy Hardware Stage
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# CPU, memory, OS disk growth, PVSCSI data disks and CD-ROM cleanup in one reconfigure

import os
import sys
import logging

from pyVmomi import vim

# Add repository root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import sitemaps

# Default logging level
logging.basicConfig(level=logging.WARNING)

#==============================================================================
# MODULE CONFIGURATION
#==============================================================================

MODULE_NAME = 'hardware'
MODULE_DESCRIPTION = 'Adjust VM hardware'

GB_IN_KB = 1024 * 1024

#==============================================================================
# DEVICE HELPERS
#==============================================================================

def scsi_controllers(devices):
    """bus number -> SCSI controller"""
    return {dev.busNumber: dev for dev in devices
            if isinstance(dev, vim.vm.device.VirtualSCSIController)}


def disks_by_bus(devices):
    """bus number -> list of disks on the SCSI controller with that bus number"""
    bus_of_key = {ctrl.key: bus for bus, ctrl in scsi_controllers(devices).items()}
    result = {}
    for dev in devices:
        if isinstance(dev, vim.vm.device.VirtualDisk) and dev.controllerKey in bus_of_key:
            result.setdefault(bus_of_key[dev.controllerKey], []).append(dev)
    return result


def find_os_disk(devices):
    """The boot disk: lowest unit on SCSI bus 0, or the first disk of any kind"""
    bus0 = disks_by_bus(devices).get(0)
    if bus0:
        return min(bus0, key=lambda d: d.unitNumber)
    return next((dev for dev in devices if isinstance(dev, vim.vm.device.VirtualDisk)), None)


def _device_change(device, operation, file_operation=None):
    change = vim.vm.device.VirtualDeviceSpec()
    change.operation = operation
    if file_operation is not None:
        change.fileOperation = file_operation
    change.device = device
    return change


def new_pvscsi_controller(bus):
    ctrl = vim.vm.device.ParaVirtualSCSIController()
    ctrl.key = -100 - bus
    ctrl.busNumber = bus
    ctrl.sharedBus = vim.vm.device.VirtualSCSIController.Sharing.noSharing
    return ctrl


def new_disk(key, controller_key, unit, size_gb):
    backing = vim.vm.device.VirtualDisk.FlatVer2BackingInfo()
    backing.diskMode = 'persistent'
    backing.thinProvisioned = True

    disk = vim.vm.device.VirtualDisk()
    disk.key = key
    disk.controllerKey = controller_key
    disk.unitNumber = unit
    disk.capacityInKB = size_gb * GB_IN_KB
    disk.backing = backing
    return disk

#==============================================================================
# PLANNING
#==============================================================================

def plan_changes(vm, hardware, remove_extra_cdroms=True):
    """
    Work out the reconfigure needed to bring vm in line with hardware

    Settings the VM already has are left out, so a rerun plans nothing.

    :param vm: vim.VirtualMachine
    :param hardware: HardwareConfig
    :param remove_extra_cdroms: Remove all but the first CD-ROM
    :return: tuple (vim.vm.ConfigSpec or None, list of change descriptions)
    """
    spec = vim.vm.ConfigSpec()
    notes = []
    device_changes = []
    devices = list(vm.config.hardware.device)
    powered_on = vm.runtime.powerState == vim.VirtualMachinePowerState.poweredOn

    if hardware.cpu and hardware.cpu != vm.config.hardware.numCPU:
        if powered_on and not (vm.config.cpuHotAddEnabled and hardware.cpu > vm.config.hardware.numCPU):
            notes.append(f'skip CPU {vm.config.hardware.numCPU} -> {hardware.cpu}: VM is powered on')
        else:
            spec.numCPUs = hardware.cpu
            notes.append(f'CPU {vm.config.hardware.numCPU} -> {hardware.cpu}')

    if (hardware.cores_per_socket and not powered_on
            and hardware.cores_per_socket != vm.config.hardware.numCoresPerSocket):
        spec.numCoresPerSocket = hardware.cores_per_socket
        notes.append(f'cores per socket -> {hardware.cores_per_socket}')

    if hardware.memory_gb:
        memory_mb = int(hardware.memory_gb * 1024)
        current_mb = vm.config.hardware.memoryMB
        if memory_mb != current_mb:
            if powered_on and not (vm.config.memoryHotAddEnabled and memory_mb > current_mb):
                notes.append(f'skip memory {current_mb}MB -> {memory_mb}MB: VM is powered on')
            else:
                spec.memoryMB = memory_mb
                notes.append(f'memory {current_mb}MB -> {memory_mb}MB')

    if hardware.disk_gb:
        os_disk = find_os_disk(devices)
        wanted_kb = hardware.disk_gb * GB_IN_KB
        if os_disk is None:
            notes.append('skip OS disk resize: VM has no disk')
        elif wanted_kb > os_disk.capacityInKB:
            notes.append(f'OS disk {os_disk.capacityInKB // GB_IN_KB}GB -> {hardware.disk_gb}GB')
            os_disk.capacityInKB = wanted_kb
            device_changes.append(_device_change(os_disk, vim.vm.device.VirtualDeviceSpec.Operation.edit))
        elif wanted_kb < os_disk.capacityInKB:
            notes.append(f'skip OS disk shrink {os_disk.capacityInKB // GB_IN_KB}GB -> {hardware.disk_gb}GB')

    sizes = [disk.size_gb for disk in hardware.additional_disks]
    existing = disks_by_bus(devices)
    present = sum(len(existing.get(bus, [])) for bus in sitemaps.DATA_BUSES)
    if len(sizes) > present:
        used_units = {bus: {d.unitNumber for d in disks} for bus, disks in existing.items()}
        layout = sitemaps.plan_disk_layout(sizes[present:], start_index=present, used_units=used_units)

        controllers = scsi_controllers(devices)
        controller_keys = {bus: ctrl.key for bus, ctrl in controllers.items()}
        for bus in sorted({bus for bus, _, _ in layout} - set(controllers)):
            ctrl = new_pvscsi_controller(bus)
            controller_keys[bus] = ctrl.key
            device_changes.append(_device_change(ctrl, vim.vm.device.VirtualDeviceSpec.Operation.add))
            notes.append(f'add PVSCSI controller on bus {bus}')

        for index, (bus, unit, size) in enumerate(layout):
            disk = new_disk(-200 - index, controller_keys[bus], unit, size)
            device_changes.append(_device_change(disk, vim.vm.device.VirtualDeviceSpec.Operation.add,
                                                 vim.vm.device.VirtualDeviceSpec.FileOperation.create))
            notes.append(f'add {size}GB disk at SCSI({bus}:{unit})')
    elif sizes:
        notes.append(f'{present} data disks already present')

    if remove_extra_cdroms:
        cdroms = sorted((dev for dev in devices if isinstance(dev, vim.vm.device.VirtualCdrom)),
                        key=lambda d: d.key)
        for cdrom in cdroms[1:]:
            device_changes.append(_device_change(cdrom, vim.vm.device.VirtualDeviceSpec.Operation.remove))
            notes.append(f'remove {cdrom.deviceInfo.label}')

    if device_changes:
        spec.deviceChange = device_changes

    changed = device_changes or spec.numCPUs or spec.numCoresPerSocket or spec.memoryMB
    return (spec if changed else None), notes

#==============================================================================
# MAIN FUNCTION
#==============================================================================

def main(opf=None, ctx=None, dry_run=False):
    """
    Main entry point for the hardware stage

    :param opf: opsfunctions module (will be imported if None)
    :param ctx: DeployContext
    :param dry_run: Whether to skip actual changes
    :return: True on success
    :raises RuntimeError: If the VM is missing or the reconfigure fails
    """
    if opf is None:
        import opsfunctions as opf

    opf.write_output(f'Starting {MODULE_NAME}: {MODULE_DESCRIPTION}')

    vm_name = ctx.config.vmware.vm_name
    vm = ctx.vm or opf.get_vm(ctx.si, vm_name)
    if vm is None:
        if dry_run:
            opf.write_output(f'VM {vm_name} does not exist yet - nothing to check')
            return True
        raise RuntimeError(f'VM {vm_name} not found')
    ctx.vm = vm

    try:
        spec, notes = plan_changes(vm, ctx.config.vmware.hardware, ctx.config.options.remove_extra_cdroms)
    except ValueError as e:
        raise RuntimeError(f'Cannot place data disks on {vm_name}: {e}') from e

    for note in notes:
        opf.write_output(f'{vm_name}: {note}')

    if spec is None:
        opf.write_output(f'{vm_name} hardware already matches the config')
        return True

    if dry_run:
        opf.write_output(f'Would reconfigure {vm_name}')
        return True

    opf.wait_task(vm.ReconfigVM_Task(spec=spec), description=f'Reconfigure {vm_name}')
    opf.write_output(f'Reconfigured {vm_name}')
    ctx.results['hardware'] = notes
    return True


#==============================================================================
# STANDALONE EXECUTION
#==============================================================================

if __name__ == '__main__':
    import vmdeploy
    sys.exit(vmdeploy.main(sys.argv[1:] + ['--stage', MODULE_NAME]))
