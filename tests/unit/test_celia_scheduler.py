"""
Unit tests for Celia's sync scheduler.
"""

from unittest.mock import MagicMock

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from celia.services.errors import SyncInProgressError
from celia.services.scheduler import SchedulerService, build_trigger


@pytest.mark.unit
@pytest.mark.celia
class TestBuildTrigger:

    def test_cron(self):
        trigger = build_trigger({'type': 'cron', 'hour': '4', 'minute': '30'}, 'America/Montevideo')

        assert isinstance(trigger, CronTrigger)

    def test_interval(self):
        trigger = build_trigger({'type': 'interval', 'hours': 6}, 'UTC')

        assert isinstance(trigger, IntervalTrigger)
        assert trigger.interval.total_seconds() == 6 * 3600

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            build_trigger({'type': 'lunar'}, 'UTC')


@pytest.mark.unit
@pytest.mark.celia
class TestSchedulerService:

    def test_job_runs_sync_without_force(self):
        sync_service = MagicMock()
        sync_service.run_product_sync.return_value = {'success': True, 'totalUpserted': 3}
        scheduler = SchedulerService(sync_service=sync_service, schedule={}, timezone='UTC')

        summary = scheduler.run_sync_job()

        sync_service.run_product_sync.assert_called_once_with(force=False)
        assert summary['totalUpserted'] == 3

    def test_job_tolerates_running_sync(self):
        sync_service = MagicMock()
        sync_service.run_product_sync.side_effect = SyncInProgressError('busy')
        scheduler = SchedulerService(sync_service=sync_service, schedule={}, timezone='UTC')

        assert scheduler.run_sync_job() is None

    def test_start_and_stop(self):
        scheduler = SchedulerService(
            sync_service=MagicMock(),
            schedule={'type': 'interval', 'hours': 1},
            timezone='UTC'
        )

        scheduler.start()
        try:
            assert scheduler.is_running() is True
            assert scheduler.next_run_time() is not None
        finally:
            scheduler.stop()

        assert scheduler.is_running() is False
