#!/usr/bin/env python3
# clone.py - vmops Deploy Clone Stage
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Clone the local template into the target cluster, folder and datastore

import os
import sys
import logging

from pyVmomi import vim

# Add repository root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Default logging level
logging.basicConfig(level=logging.WARNING)

#==============================================================================
# MODULE CONFIGURATION
#==============================================================================

MODULE_NAME = 'clone'
MODULE_DESCRIPTION = 'Clone VM from local template'

CLONE_TIMEOUT = 7200  # seconds

#==============================================================================
# SPEC BUILDERS
#==============================================================================

def nic_backing(network):
    """
    Backing info for a NIC attached to a standard or distributed port group

    :param network: vim.Network or vim.dvs.DistributedVirtualPortgroup
    """
    if isinstance(network, vim.dvs.DistributedVirtualPortgroup):
        backing = vim.vm.device.VirtualEthernetCard.DistributedVirtualPortBackingInfo()
        backing.port = vim.dvs.PortConnection(
            portgroupKey=network.key,
            switchUuid=network.config.distributedVirtualSwitch.uuid)
        return backing

    backing = vim.vm.device.VirtualEthernetCard.NetworkBackingInfo()
    backing.deviceName = network.name
    backing.network = network
    return backing


def nic_changes(template, network):
    """Edit specs moving the template's first NIC onto network"""
    nics = [dev for dev in template.config.hardware.device
            if isinstance(dev, vim.vm.device.VirtualEthernetCard)]
    if not nics:
        return []

    nic = nics[0]
    nic.backing = nic_backing(network)
    nic.connectable = vim.vm.device.VirtualDevice.ConnectInfo(
        startConnected=True, connected=False, allowGuestControl=True)
    change = vim.vm.device.VirtualDeviceSpec()
    change.operation = vim.vm.device.VirtualDeviceSpec.Operation.edit
    change.device = nic
    return [change]


def build_clone_spec(si, template, resource_pool, datastore=None, network=None, customization=''):
    """
    Build the CloneSpec for a powered-off, non-template clone

    :param customization: Name of a guest customization spec in vCenter
    :raises RuntimeError: If the customization spec does not exist
    """
    relocate = vim.vm.RelocateSpec()
    relocate.pool = resource_pool
    if datastore is not None:
        relocate.datastore = datastore

    spec = vim.vm.CloneSpec()
    spec.location = relocate
    spec.powerOn = False
    spec.template = False

    if network is not None:
        spec.config = vim.vm.ConfigSpec(deviceChange=nic_changes(template, network))

    if customization:
        manager = si.content.customizationSpecManager
        if not manager.DoesCustomizationSpecExist(name=customization):
            raise RuntimeError(f'Customization spec {customization} not found')
        spec.customization = manager.GetCustomizationSpec(name=customization).spec

    return spec


def clone_with_sdrs(opf, si, template, name, folder, resource_pool, pod, clone_spec):
    """
    Clone into a datastore cluster using the first Storage DRS recommendation

    :return: True if Storage DRS placed the clone, False if it gave no recommendation
    """
    placement = vim.storageDrs.StoragePlacementSpec()
    placement.type = 'clone'
    placement.cloneName = name
    placement.folder = folder
    placement.resourcePool = resource_pool
    placement.vm = template
    placement.cloneSpec = clone_spec
    placement.podSelectionSpec = vim.storageDrs.PodSelectionSpec(storagePod=pod)

    srm = si.content.storageResourceManager
    result = srm.RecommendDatastores(storageSpec=placement)
    if not result.recommendations:
        opf.write_output(f'Storage DRS gave no recommendation for {name} in {pod.name}')
        return False

    opf.write_output(f'Applying Storage DRS recommendation {result.recommendations[0].key} for {name}')
    task = srm.ApplyStorageDrsRecommendation_Task(key=[result.recommendations[0].key])
    opf.wait_task(task, timeout=CLONE_TIMEOUT, description=f'Clone {name}')
    return True

#==============================================================================
# MAIN FUNCTION
#==============================================================================

def main(opf=None, ctx=None, dry_run=False):
    """
    Main entry point for the clone stage

    :param opf: opsfunctions module (will be imported if None)
    :param ctx: DeployContext
    :param dry_run: Whether to skip actual changes
    :return: True on success
    :raises RuntimeError: If the VM cannot be cloned
    """
    if opf is None:
        import opsfunctions as opf

    opf.write_output(f'Starting {MODULE_NAME}: {MODULE_DESCRIPTION}')

    vmw = ctx.config.vmware
    si = ctx.si

    existing = opf.get_vm(si, vmw.vm_name)
    if existing is not None:
        if existing.config.template:
            raise RuntimeError(f'{vmw.vm_name} exists as a template - refusing to reuse it as a VM')
        opf.write_output(f'VM {vmw.vm_name} already exists - skipping clone')
        ctx.vm = existing
        return True

    # In a dry run the template and placement objects may not exist yet
    unresolved = []

    def missing(message):
        if not dry_run:
            raise RuntimeError(message)
        opf.write_output(f'Dry run: {message}')
        unresolved.append(message)

    template_name = vmw.content_library.template_name
    template = ctx.template or opf.get_vm(si, template_name)
    if template is None:
        missing(f'Template {template_name or "(none configured)"} not found')

    cluster = opf.get_cluster(si, vmw.cluster)
    if cluster is None:
        missing(f'Cluster {vmw.cluster} not found')
    folder = opf.get_folder(si, vmw.vm_folder, anchor=cluster)
    if folder is None:
        missing(f'VM folder {vmw.vm_folder} not found')

    network = None
    if vmw.network:
        network = opf.get_network(si, vmw.network)
        if network is None:
            missing(f'Network {vmw.network} not found')

    pod = None
    datastore = None
    if vmw.datastore_cluster:
        pod = opf.get_datastore_cluster(si, vmw.datastore_cluster)
        if pod is None:
            missing(f'Datastore cluster {vmw.datastore_cluster} not found')
    else:
        datastore = opf.get_datastore(si, vmw.datastore)
        if datastore is None:
            missing(f'Datastore {vmw.datastore} not found')

    target = vmw.datastore_cluster or vmw.datastore
    if dry_run:
        if template is None:
            opf.write_output(f'Would clone from {template_name} once it is materialized')
        opf.write_output(f'Would clone to {vmw.vm_name} on {vmw.cluster}/{target}')
        if unresolved:
            opf.write_output(f'{len(unresolved)} inventory object(s) must exist before the real run')
        return True

    clone_spec = build_clone_spec(si, template, cluster.resourcePool, datastore, network,
                                  vmw.customization_spec)

    opf.write_output(f'Cloning {template.name} to {vmw.vm_name} on {vmw.cluster}/{target}')
    placed = False
    if pod is not None:
        placed = clone_with_sdrs(opf, si, template, vmw.vm_name, folder, cluster.resourcePool, pod, clone_spec)
        if not placed:
            datastore = opf.pick_datastore(pod)
            if datastore is None:
                raise RuntimeError(f'No accessible datastore in {pod.name}')
            opf.write_output(f'Falling back to datastore {datastore.name} with the most free space')
            clone_spec.location.datastore = datastore

    if not placed:
        task = template.Clone(folder=folder, name=vmw.vm_name, spec=clone_spec)
        opf.wait_task(task, timeout=CLONE_TIMEOUT, description=f'Clone {vmw.vm_name}')

    vm = opf.get_vm(si, vmw.vm_name)
    if vm is None:
        raise RuntimeError(f'Clone of {vmw.vm_name} finished but the VM is not in the inventory')

    opf.write_output(f'Cloned {vmw.vm_name}')
    ctx.vm = vm
    ctx.results['clone'] = vmw.vm_name
    return True


#==============================================================================
# STANDALONE EXECUTION
#==============================================================================

if __name__ == '__main__':
    import vmdeploy
    sys.exit(vmdeploy.main(sys.argv[1:] + ['--stage', MODULE_NAME]))
