#!/usr/bin/env python3
# tags.py - vmops Deploy Tags Stage
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Attach vSphere tags and record the change number in the VM notes

import os
import sys
import datetime
import logging

# Add repository root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Default logging level
logging.basicConfig(level=logging.WARNING)

#==============================================================================
# MODULE CONFIGURATION
#==============================================================================

MODULE_NAME = 'tags'
MODULE_DESCRIPTION = 'Apply tags and notes'

#==============================================================================
# HELPERS
#==============================================================================

def build_annotation(config, when=None):
    """
    VM notes text: deploy line with timestamp and change number, then any configured notes

    :param config: DeployConfig
    :param when: datetime of the deploy (default now)
    """
    when = when or datetime.datetime.now()
    line = f'Deployed by vmops {when.strftime("%Y-%m-%d %H:%M")}'
    if config.change_request_number:
        line += f' - {config.change_request_number}'
    return f'{line}\n{config.notes}' if config.notes else line


def attach_tags(opf, rest, vm, tags):
    """
    Attach each tag to the VM, skipping ones already attached

    A tag that cannot be found or attached is logged and skipped.

    :return: list of tags (as 'Category/Tag') that failed
    """
    failed = []
    attached = set(rest.list_attached_tags(vm._moId))

    for tag in tags:
        try:
            category_id = rest.find_category(tag.category)
            if not category_id:
                opf.write_output(f'Tag category {tag.category} not found - skipping {tag}')
                failed.append(str(tag))
                continue
            tag_id = rest.find_tag(category_id, tag.name)
            if not tag_id:
                opf.write_output(f'Tag {tag} not found - skipping')
                failed.append(str(tag))
                continue
            if tag_id in attached:
                opf.write_output(f'Tag {tag} already attached to {vm.name}')
                continue
            rest.attach_tag(tag_id, vm._moId)
            attached.add(tag_id)
            opf.write_output(f'Attached tag {tag} to {vm.name}')
        except Exception as e:
            opf.write_output(f'Could not attach tag {tag} to {vm.name}: {e}')
            failed.append(str(tag))

    return failed

#==============================================================================
# MAIN FUNCTION
#==============================================================================

def main(opf=None, ctx=None, dry_run=False):
    """
    Main entry point for the tags stage

    :param opf: opsfunctions module (will be imported if None)
    :param ctx: DeployContext
    :param dry_run: Whether to skip actual changes
    :return: True when every tag and the notes were applied
    """
    if opf is None:
        import opsfunctions as opf

    opf.write_output(f'Starting {MODULE_NAME}: {MODULE_DESCRIPTION}')

    config = ctx.config
    vm_name = config.vmware.vm_name

    vm = ctx.vm or opf.get_vm(ctx.si, vm_name)
    if vm is None:
        if dry_run:
            opf.write_output(f'Would tag {vm_name} with {", ".join(map(str, config.tags)) or "no tags"}')
            return True
        opf.write_output(f'VM {vm_name} not found')
        return False
    ctx.vm = vm

    annotation = build_annotation(config)
    if dry_run:
        for tag in config.tags:
            opf.write_output(f'Would attach tag {tag} to {vm_name}')
        opf.write_output(f'Would set notes on {vm_name}: {annotation!r}')
        return True

    ok = True
    if config.tags:
        if ctx.rest is None:
            opf.write_output('No vCenter REST session - cannot attach tags')
            ok = False
        else:
            failed = attach_tags(opf, ctx.rest, vm, config.tags)
            if failed:
                opf.write_output(f'{len(failed)} tag(s) not applied to {vm_name}: {", ".join(failed)}')
                ok = False
            ctx.results['tags_failed'] = failed

    try:
        opf.set_annotation(vm, annotation)
        opf.write_output(f'Set notes on {vm_name}')
    except Exception as e:
        opf.write_output(f'Could not set notes on {vm_name}: {e}')
        ok = False

    return ok


#==============================================================================
# STANDALONE EXECUTION
#==============================================================================

if __name__ == '__main__':
    import vmdeploy
    sys.exit(vmdeploy.main(sys.argv[1:] + ['--stage', MODULE_NAME]))
