#!/usr/bin/env python3
# test_deploy_status.py - vmops Tools/deploy_status.py Unit Tests
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team

import pytest
import os
import sys
import json
import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from deploy_status import DeployStatus, Task, TaskStatus

STAGES = ['clone', 'hardware', 'power', 'adjoin', 'tags']


class TestTask:
    """Test Task dataclass"""

    def test_defaults(self):
        task = Task(id='clone', name='Clone VM')
        assert task.status == TaskStatus.PENDING
        assert task.duration is None
        assert task.to_dict()['status'] == 'pending'

    def test_duration(self):
        start = datetime.datetime(2026, 10, 19, 10, 0, 0)
        task = Task(id='clone', name='Clone VM', start_time=start,
                    end_time=start + datetime.timedelta(seconds=90))
        assert task.duration == 90


class TestDeployStatus:
    """Test DeployStatus tracking and persistence"""

    def test_update_and_persist(self, temp_dir):
        status = DeployStatus('USE1-WEB01', STAGES, temp_dir, change='CHG0012345')
        status.update_task('clone', 'running')
        status.update_task('clone', TaskStatus.COMPLETE, 'cloned')

        with open(os.path.join(temp_dir, 'USE1-WEB01.json')) as f:
            saved = json.load(f)
        assert saved['vm_name'] == 'USE1-WEB01'
        assert saved['change'] == 'CHG0012345'
        clone = next(t for t in saved['tasks'] if t['id'] == 'clone')
        assert clone['status'] == 'complete'
        assert clone['message'] == 'cloned'
        assert clone['start_time'] and clone['end_time']

    def test_reload_for_resume(self, temp_dir):
        first = DeployStatus('USE1-WEB01', STAGES, temp_dir)
        first.update_task('clone', 'complete')
        first.update_task('hardware', 'failed', 'boom')

        second = DeployStatus('USE1-WEB01', STAGES, temp_dir)
        assert second.is_complete('clone')
        assert not second.is_complete('hardware')
        assert second.tasks['hardware'].message == 'boom'

    def test_fresh_run_ignores_saved_state(self, temp_dir):
        DeployStatus('USE1-WEB01', STAGES, temp_dir).update_task('clone', 'complete')
        fresh = DeployStatus('USE1-WEB01', STAGES, temp_dir, load_state=False)
        assert not fresh.is_complete('clone')

    def test_corrupt_state_ignored(self, temp_dir):
        with open(os.path.join(temp_dir, 'USE1-WEB01.json'), 'w') as f:
            f.write('{not json')
        status = DeployStatus('USE1-WEB01', STAGES, temp_dir)
        assert not status.is_complete('clone')

    def test_unknown_task_ignored(self, temp_dir):
        status = DeployStatus('USE1-WEB01', STAGES, temp_dir)
        status.update_task('template', 'running')
        assert 'template' not in status.tasks

    def test_set_failed_marks_running_task(self, temp_dir):
        status = DeployStatus('USE1-WEB01', STAGES, temp_dir)
        status.update_task('power', 'running')
        status.set_failed('tools timeout')
        assert status.failed
        assert status.tasks['power'].status == TaskStatus.FAILED
        assert status.tasks['power'].message == 'tools timeout'

    def test_set_complete_skips_pending(self, temp_dir):
        status = DeployStatus('USE1-WEB01', STAGES, temp_dir)
        status.update_task('clone', 'complete')
        status.set_complete()
        assert status.tasks['clone'].status == TaskStatus.COMPLETE
        assert status.tasks['tags'].status == TaskStatus.SKIPPED

    def test_summary(self, temp_dir):
        status = DeployStatus('USE1-WEB01', STAGES, temp_dir, change='CHG0012345')
        status.update_task('clone', 'complete')
        status.set_failed('AD join failed', task_id='adjoin')
        text = status.summary()
        assert text.splitlines()[0] == 'Deployment status for USE1-WEB01 (CHG0012345)'
        assert 'clone' in text and 'complete' in text
        assert 'FAILED: AD join failed' in text

    def test_reset(self, temp_dir):
        status = DeployStatus('USE1-WEB01', STAGES, temp_dir)
        status.update_task('clone', 'complete')
        status.reset()
        assert DeployStatus('USE1-WEB01', STAGES, temp_dir).tasks['clone'].status == TaskStatus.PENDING
