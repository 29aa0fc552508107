# deploytypes.py - vmops Deploy Type Execution Path Manager
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Stage sequences for full deploys, clones from a local template, finalize-only runs and template refreshes

import os
import importlib.util
from typing import List, Optional, Dict, Any


class DeployTypeLoader:
    """
    Manages deploy-type specific stage module loading and execution.

    Deploy Types:
    - FULL: Content library item to finished, domain-joined VM
    - CLONE: Clone from an existing local template
    - FINALIZE: Finish a VM that already exists (hardware, power, AD, tags)
    - TEMPLATE: Refresh the local template from the content library only
    """

    # Keys are UPPERCASE to match the normalization in __init__
    STAGE_SEQUENCE: Dict[str, List[str]] = {
        'FULL': ['template', 'clone', 'hardware', 'power', 'adjoin', 'tags'],
        'CLONE': ['clone', 'hardware', 'power', 'adjoin', 'tags'],
        'FINALIZE': ['hardware', 'power', 'adjoin', 'tags'],
        'TEMPLATE': ['template'],
    }

    DEPLOYTYPE_INFO: Dict[str, Dict[str, Any]] = {
        'FULL': {
            'name': 'Full deployment',
            'description': 'Materialize template, clone, configure, join AD and tag',
            'needs_rest': True,
            'creates_vm': True,
        },
        'CLONE': {
            'name': 'Clone deployment',
            'description': 'Clone from the local template, configure, join AD and tag',
            'needs_rest': True,
            'creates_vm': True,
        },
        'FINALIZE': {
            'name': 'Finalize existing VM',
            'description': 'Configure, power on, join AD and tag an existing VM',
            'needs_rest': True,
            'creates_vm': False,
        },
        'TEMPLATE': {
            'name': 'Template refresh',
            'description': 'Deploy the content library item as the local template',
            'needs_rest': True,
            'creates_vm': False,
        },
    }

    # A failure in any of these stops the sequence
    CRITICAL_STAGES = ['template', 'clone', 'hardware', 'power']

    def __init__(self, deploy_type: str, deploy_root: str, override_dir: str = ''):
        """
        Initialize the DeployType loader

        :param deploy_type: FULL, CLONE, FINALIZE or TEMPLATE
        :param deploy_root: Directory holding the core Deploy/ stage modules
        :param override_dir: Site directory whose stage modules take priority
        """
        self.deploy_type = deploy_type.upper() if deploy_type else 'FULL'
        self.deploy_root = deploy_root
        self.override_dir = override_dir

        if self.deploy_type not in self.STAGE_SEQUENCE:
            raise ValueError(f'Unknown deploy type {deploy_type}; '
                             f'expected one of {", ".join(self.STAGE_SEQUENCE)}')

    def get_deploytype_info(self) -> Dict[str, Any]:
        """Get information about the current deploy type"""
        return self.DEPLOYTYPE_INFO[self.deploy_type]

    def get_stage_sequence(self) -> List[str]:
        """Get the stage sequence for the current deploy type"""
        return list(self.STAGE_SEQUENCE[self.deploy_type])

    def is_critical(self, stage: str) -> bool:
        return stage in self.CRITICAL_STAGES

    def get_module_path(self, stage: str) -> Optional[str]:
        """
        Find the path to a stage module, respecting the override hierarchy:

        1. {override_dir}/{stage}.py   (site override)
        2. {deploy_root}/{stage}.py    (core module)

        :param stage: Name of the stage (without .py)
        :return: Full path to the module, or None if not found
        """
        filename = f'{stage}.py'
        search_paths = []
        if self.override_dir:
            search_paths.append(os.path.join(self.override_dir, filename))
        search_paths.append(os.path.join(self.deploy_root, filename))

        for path in search_paths:
            if os.path.isfile(path):
                return path
        return None

    def load_module(self, stage: str):
        """
        Dynamically load a stage module

        :param stage: Name of the stage
        :return: Tuple of (module, module_path)
        """
        module_path = self.get_module_path(stage)
        if not module_path:
            raise FileNotFoundError(f'Stage module {stage} not found for deploy type {self.deploy_type}')

        spec = importlib.util.spec_from_file_location(f'vmops_stage_{stage}', module_path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module, module_path

    def run_sequence(self, opf, ctx, dry_run=False, status=None, resume=False, only=None):
        """
        Execute the stage sequence for the deploy type

        :param opf: opsfunctions module reference
        :param ctx: DeployContext passed to every stage
        :param dry_run: Passed to every stage
        :param status: Optional DeployStatus to update
        :param resume: Skip stages the saved status marks complete
        :param only: Run just this stage
        :return: list of non-critical stages that failed
        :raises RuntimeError: If a critical stage fails
        """
        sequence = [only] if only else self.get_stage_sequence()
        opf.write_output(f'Starting {self.deploy_type} deploy sequence: {sequence}')

        failed = []
        for stage in sequence:
            if resume and status is not None and status.is_complete(stage):
                opf.write_output(f'Skipping {stage} - completed in a previous run')
                continue

            module, module_path = self.load_module(stage)
            opf.write_output(f'Running {stage} from {module_path}')
            if status is not None:
                status.update_task(stage, 'running')

            try:
                result = module.main(opf=opf, ctx=ctx, dry_run=dry_run)
            except Exception as e:
                opf.write_output(f'Stage {stage} failed: {e}')
                if status is not None:
                    status.update_task(stage, 'failed', str(e))
                if self.is_critical(stage):
                    raise
                failed.append(stage)
                continue

            if result is False:
                opf.write_output(f'Stage {stage} returned failure status')
                if status is not None:
                    status.update_task(stage, 'failed', 'stage reported failure')
                if self.is_critical(stage):
                    raise RuntimeError(f'Critical stage {stage} failed')
                failed.append(stage)
            elif status is not None:
                # Dry runs are recorded as skipped so a resume still runs the stage
                if dry_run:
                    status.update_task(stage, 'skipped', 'dry run')
                else:
                    status.update_task(stage, 'complete', '')

        return failed

    def list_available_modules(self) -> Dict[str, str]:
        """
        List all stage modules and their paths

        :return: Dictionary of stage -> path
        """
        return {stage: self.get_module_path(stage) or 'NOT FOUND' for stage in self.get_stage_sequence()}
