#!/usr/bin/env python3
# deploy_status.py - vmops Deploy Status Tracker
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Per-VM stage status persisted as JSON so an interrupted deploy can be resumed

import os
import sys
import datetime
import json
from typing import Dict, List, Optional
from dataclasses import dataclass
from enum import Enum

#==============================================================================
# STATUS TYPES
#==============================================================================

class TaskStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class Task:
    id: str
    name: str
    status: TaskStatus = TaskStatus.PENDING
    start_time: Optional[datetime.datetime] = None
    end_time: Optional[datetime.datetime] = None
    message: str = ""

    @property
    def duration(self) -> Optional[float]:
        """Seconds between start and end, when both are known"""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'status': self.status.value,
            'message': self.message,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
        }


STAGE_NAMES = {
    'template': 'Materialize template',
    'clone': 'Clone VM',
    'hardware': 'Adjust hardware',
    'power': 'Power on / tools',
    'adjoin': 'Join Active Directory',
    'tags': 'Tags and notes',
}

#==============================================================================
# DEPLOY STATUS CLASS
#==============================================================================

class DeployStatus:
    """Track and persist the stage status of one VM deployment"""

    def __init__(self, vm_name: str, stages: List[str], state_dir: str,
                 change: str = '', load_state: bool = True):
        self.vm_name = vm_name
        self.change = change
        self.state_dir = state_dir
        self.start_time = datetime.datetime.now()
        self.failed = False
        self.failure_reason = ""
        self.tasks: Dict[str, Task] = {
            stage: Task(id=stage, name=STAGE_NAMES.get(stage, stage)) for stage in stages
        }

        if load_state:
            self._load_state()

    @property
    def state_file(self) -> str:
        return os.path.join(self.state_dir, f'{self.vm_name}.json')

    def update_task(self, task_id: str, status, message: str = ""):
        """
        Update a stage status

        :param task_id: Stage name
        :param status: Status string or TaskStatus enum
        :param message: Optional status message
        """
        task = self.tasks.get(task_id)
        if task is None:
            return

        status_enum = status if isinstance(status, TaskStatus) else TaskStatus(status.lower())

        if status_enum == TaskStatus.RUNNING:
            task.start_time = datetime.datetime.now()
            task.end_time = None
        elif status_enum in (TaskStatus.COMPLETE, TaskStatus.FAILED, TaskStatus.SKIPPED):
            task.end_time = datetime.datetime.now()

        task.status = status_enum
        task.message = message
        self._save_state()

    def is_complete(self, task_id: str) -> bool:
        task = self.tasks.get(task_id)
        return task is not None and task.status == TaskStatus.COMPLETE

    def set_failed(self, reason: str, task_id: str = None):
        """
        Mark the deployment as failed

        The given stage, or else the first RUNNING stage, is marked FAILED too.
        """
        self.failed = True
        self.failure_reason = reason

        if task_id is None:
            task_id = next((t.id for t in self.tasks.values() if t.status == TaskStatus.RUNNING), None)
        if task_id:
            self.update_task(task_id, TaskStatus.FAILED, reason)
        else:
            self._save_state()

    def set_complete(self):
        """Mark any stage still pending as skipped"""
        for task in self.tasks.values():
            if task.status == TaskStatus.PENDING:
                task.status = TaskStatus.SKIPPED
        self._save_state()

    def summary(self) -> str:
        """Plain text status table"""
        lines = [f'Deployment status for {self.vm_name}' + (f' ({self.change})' if self.change else '')]
        for task in self.tasks.values():
            duration = f'{task.duration:.0f}s' if task.duration is not None else ''
            line = f'  {task.id:<10} {task.status.value:<9} {duration:>6}'
            if task.message:
                line += f'  {task.message}'
            lines.append(line.rstrip())
        if self.failed:
            lines.append(f'  FAILED: {self.failure_reason}')
        return '\n'.join(lines)

    def to_dict(self) -> dict:
        return {
            'vm_name': self.vm_name,
            'change': self.change,
            'start_time': self.start_time.isoformat(),
            'failed': self.failed,
            'failure_reason': self.failure_reason,
            'tasks': [t.to_dict() for t in self.tasks.values()],
        }

    def _load_state(self):
        """Load state from the JSON file if it exists for this VM"""
        try:
            if not os.path.exists(self.state_file):
                return
            with open(self.state_file, 'r') as f:
                state = json.load(f)
        except (OSError, ValueError):
            return

        if state.get('vm_name') != self.vm_name:
            return

        if state.get('start_time'):
            self.start_time = datetime.datetime.fromisoformat(state['start_time'])
        self.change = self.change or state.get('change', '')
        self.failed = state.get('failed', False)
        self.failure_reason = state.get('failure_reason', '')

        for task_state in state.get('tasks', []):
            task = self.tasks.get(task_state.get('id', ''))
            if task is None:
                continue
            task.status = TaskStatus(task_state.get('status', 'pending'))
            task.message = task_state.get('message', '')
            if task_state.get('start_time'):
                task.start_time = datetime.datetime.fromisoformat(task_state['start_time'])
            if task_state.get('end_time'):
                task.end_time = datetime.datetime.fromisoformat(task_state['end_time'])

    def _save_state(self):
        """Save state to the JSON file"""
        try:
            os.makedirs(self.state_dir, exist_ok=True)
            with open(self.state_file, 'w') as f:
                json.dump(self.to_dict(), f, indent=2)
        except OSError as e:
            print(f'Warning: Could not save deploy state {self.state_file}: {e}')

    def reset(self):
        """Forget saved progress for this VM"""
        self.failed = False
        self.failure_reason = ""
        for task in self.tasks.values():
            task.status = TaskStatus.PENDING
            task.message = ""
            task.start_time = None
            task.end_time = None
        self._save_state()


#==============================================================================
# STANDALONE EXECUTION
#==============================================================================

def main():
    """Print the saved status of a deployment"""
    import argparse

    parser = argparse.ArgumentParser(description='Show saved vmops deploy status')
    parser.add_argument('vm_name', help='VM name')
    parser.add_argument('--state-dir', default=os.path.expanduser('~/vmops/state'),
                        help='Directory holding deploy state files')
    args = parser.parse_args()

    status = DeployStatus(args.vm_name, list(STAGE_NAMES), args.state_dir)
    if not os.path.exists(status.state_file):
        print(f'No saved state for {args.vm_name} in {args.state_dir}')
        sys.exit(1)
    print(status.summary())
    sys.exit(1 if status.failed else 0)


if __name__ == '__main__':
    main()
