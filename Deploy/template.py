#!/usr/bin/env python3
# template.py - vmops Deploy Template Stage
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Materialize the content library item as a local vSphere template

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

MODULE_NAME = 'template'
MODULE_DESCRIPTION = 'Materialize content library template'

#==============================================================================
# MAIN FUNCTION
#==============================================================================

def main(opf=None, ctx=None, dry_run=False):
    """
    Main entry point for the template stage

    Reuses an existing local template unless ForceReplace is set, in which
    case the old template is destroyed and the library item deployed again.

    :param opf: opsfunctions module (will be imported if None)
    :param ctx: DeployContext
    :param dry_run: Whether to skip actual changes
    :return: True on success
    :raises RuntimeError: If the template cannot be materialized
    """
    if opf is None:
        import opsfunctions as opf

    opf.write_output(f'Starting {MODULE_NAME}: {MODULE_DESCRIPTION}')

    vmw = ctx.config.vmware
    cl = vmw.content_library
    template_name = cl.template_name

    if not template_name:
        opf.write_output('No content library item or local template configured - nothing to do')
        return True

    existing = opf.get_vm(ctx.si, template_name)

    if existing is not None and not existing.config.template:
        raise RuntimeError(f'{template_name} exists but is a virtual machine, not a template')

    if existing is not None and not cl.force_replace:
        opf.write_output(f'Reusing existing template {template_name}')
        ctx.template = existing
        return True

    if not cl.library or not cl.item:
        if existing is None:
            raise RuntimeError(f'Template {template_name} not found and no content library item is configured')
        ctx.template = existing
        return True

    if dry_run:
        action = 'replace' if existing is not None else 'create'
        opf.write_output(f'Would {action} template {template_name} from {cl.library}/{cl.item}')
        ctx.template = existing
        return True

    if ctx.rest is None:
        raise RuntimeError('Content library deploy needs a vCenter REST session')

    library_id = ctx.rest.find_library(cl.library)
    if not library_id:
        raise RuntimeError(f'Content library {cl.library} not found on {vmw.vcsa}')
    item_id = ctx.rest.find_library_item(library_id, cl.item)
    if not item_id:
        raise RuntimeError(f'Item {cl.item} not found in content library {cl.library}')
    item_type = (ctx.rest.get_library_item(item_id) or {}).get('type', '')

    cluster = opf.get_cluster(ctx.si, vmw.cluster)
    if cluster is None:
        raise RuntimeError(f'Cluster {vmw.cluster} not found')
    folder = opf.get_folder(ctx.si, vmw.vm_folder, anchor=cluster)
    if folder is None:
        raise RuntimeError(f'VM folder {vmw.vm_folder} not found')
    datastore = opf.resolve_datastore(ctx.si, vmw.datastore, vmw.datastore_cluster)
    if datastore is None:
        raise RuntimeError(f'No usable datastore for {vmw.datastore or vmw.datastore_cluster}')

    if existing is not None:
        opf.write_output(f'ForceReplace set - destroying template {template_name}')
        opf.wait_task(existing.Destroy_Task(), description=f'Destroy template {template_name}')

    opf.write_output(f'Deploying {item_type} item {cl.library}/{cl.item} as {template_name} on {datastore.name}')
    vm_id = ctx.rest.deploy_library_item(item_id, item_type, template_name,
                                         folder_id=folder._moId,
                                         resource_pool_id=cluster.resourcePool._moId,
                                         cluster_id=cluster._moId,
                                         datastore_id=datastore._moId)

    template = opf.get_vm(ctx.si, template_name)
    if template is None:
        raise RuntimeError(f'Deployed {vm_id} but cannot find {template_name} in the inventory')
    if not template.config.template:
        template.MarkAsTemplate()
        opf.write_output(f'Marked {template_name} as template')

    ctx.template = template
    ctx.results['template'] = template_name
    return True


#==============================================================================
# STANDALONE EXECUTION
#==============================================================================

if __name__ == '__main__':
    import vmdeploy
    sys.exit(vmdeploy.main(sys.argv[1:] + ['--stage', MODULE_NAME]))
