"""Tests for the farm settings endpoints and their effect on the live schedule."""

from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from farmtrack import db
from farmtrack.models import NIGHT_CHECK_SCHEDULE_KEY, Setting


class TestNightCheckSchedule:
    def test_defaults_to_21_00(self, client, factory, headers_for):
        farm = factory.farm('F1')
        response = client.get('/api/settings/night-check-schedule', headers=headers_for(factory.owner_of(farm)))
        assert response.status_code == 200
        assert response.get_json() == {'schedule': '21:00'}

    def test_update_reschedules_only_that_farm(self, client, factory, headers_for, night_check):
        f1 = factory.farm('F1')
        f2 = factory.farm('F2')
        factory.schedule(f1, '21:00')
        factory.schedule(f2, '21:00')
        night_check.load_schedules()

        response = client.put('/api/settings/night-check-schedule',
                              headers=headers_for(factory.owner_of(f1)), json={'schedule': '06:30'})

        assert response.status_code == 200
        assert response.get_json() == {
            'schedule': '06:30',
            'message': 'Night check schedule updated successfully and will take effect immediately.',
        }
        snapshot = night_check.state.snapshot()
        assert snapshot[str(f1.id)] == '30 6 * * *'
        assert snapshot[str(f2.id)] == '0 21 * * *'

        stored = client.get('/api/settings/night-check-schedule', headers=headers_for(factory.owner_of(f1)))
        assert stored.get_json() == {'schedule': '06:30'}

    def test_creates_setting_when_missing(self, client, factory, headers_for, night_check):
        farm = factory.farm('F1')
        response = client.put('/api/settings/night-check-schedule',
                              headers=headers_for(factory.owner_of(farm)), json={'schedule': '5:45'})
        assert response.status_code == 200
        assert Setting.query.filter_by(key=NIGHT_CHECK_SCHEDULE_KEY, farm_id=farm.id).one().value == '5:45'
        assert night_check.state.snapshot()[str(farm.id)] == '45 5 * * *'

    def test_invalid_format(self, client, factory, headers_for, night_check):
        farm = factory.farm('F1')
        factory.schedule(farm, '21:00')
        night_check.load_schedules()

        response = client.put('/api/settings/night-check-schedule',
                              headers=headers_for(factory.owner_of(farm)), json={'schedule': '25:00'})

        assert response.status_code == 400
        assert response.get_json() == {'error': 'Invalid time format. Use HH:MM (24-hour format)'}
        assert night_check.state.snapshot()[str(farm.id)] == '0 21 * * *'

    def test_schedule_required(self, client, factory, headers_for):
        farm = factory.farm('F1')
        response = client.put('/api/settings/night-check-schedule',
                              headers=headers_for(factory.owner_of(farm)), json={})
        assert response.status_code == 400
        assert response.get_json() == {'error': 'Schedule time is required'}

    def test_scheduler_failure_keeps_old_setting(self, client, factory, headers_for, night_check):
        farm = factory.farm('F1')
        factory.schedule(farm, '21:00')
        night_check.load_schedules()

        with patch.object(night_check.state, 'install', side_effect=RuntimeError('scheduler down')):
            response = client.put('/api/settings/night-check-schedule',
                                  headers=headers_for(factory.owner_of(farm)), json={'schedule': '06:30'})

        assert response.status_code == 500
        assert response.get_json() == {'error': 'Failed to update night check schedule'}
        assert Setting.query.filter_by(key=NIGHT_CHECK_SCHEDULE_KEY, farm_id=farm.id).one().value == '21:00'

    def test_failed_job_replacement_keeps_the_running_job(self, client, factory, headers_for, night_check):
        farm = factory.farm('F1')
        factory.schedule(farm, '21:00')
        night_check.load_schedules()

        with patch.object(night_check.state.scheduler, 'add_job', side_effect=RuntimeError('jobstore down')):
            response = client.put('/api/settings/night-check-schedule',
                                  headers=headers_for(factory.owner_of(farm)), json={'schedule': '06:30'})

        assert response.status_code == 500
        assert Setting.query.filter_by(key=NIGHT_CHECK_SCHEDULE_KEY, farm_id=farm.id).one().value == '21:00'
        assert night_check.state.snapshot() == {str(farm.id): '0 21 * * *'}

    def test_failed_commit_restores_previous_job(self, client, factory, headers_for, night_check):
        farm = factory.farm('F1')
        factory.schedule(farm, '21:00')
        night_check.load_schedules()
        headers = headers_for(factory.owner_of(farm))

        with patch.object(db.session, 'commit', side_effect=OperationalError('UPDATE setting', {}, Exception('disk I/O error'))):
            response = client.put('/api/settings/night-check-schedule', headers=headers, json={'schedule': '06:30'})

        assert response.status_code == 500
        assert response.get_json() == {'error': 'Failed to update night check schedule'}
        assert Setting.query.filter_by(key=NIGHT_CHECK_SCHEDULE_KEY, farm_id=farm.id).one().value == '21:00'
        assert night_check.state.snapshot() == {str(farm.id): '0 21 * * *'}

    def test_body_must_be_an_object(self, client, factory, headers_for):
        farm = factory.farm('F1')
        response = client.put('/api/settings/night-check-schedule',
                              headers=headers_for(factory.owner_of(farm)), json=['06:30'])
        assert response.status_code == 400

    def test_workers_cannot_change_schedule(self, client, factory, headers_for):
        farm = factory.farm('F1')
        worker = factory.user(role='worker', farm=farm)
        response = client.put('/api/settings/night-check-schedule',
                              headers=headers_for(worker), json={'schedule': '06:30'})
        assert response.status_code == 403

    def test_workers_can_read_schedule(self, client, factory, headers_for):
        farm = factory.farm('F1')
        factory.schedule(farm, '20:15')
        worker = factory.user(role='worker', farm=farm)
        response = client.get('/api/settings/night-check-schedule', headers=headers_for(worker))
        assert response.get_json() == {'schedule': '20:15'}


class TestGenericSettings:
    def test_put_and_get(self, client, factory, headers_for):
        farm = factory.farm('F1')
        headers = headers_for(factory.owner_of(farm))

        put = client.put('/api/settings/alert_email', headers=headers, json={'value': 'barn@example.com'})
        assert put.status_code == 200
        assert put.get_json() == {'key': 'alert_email', 'value': 'barn@example.com'}

        assert client.get('/api/settings/alert_email', headers=headers).get_json()['value'] == 'barn@example.com'
        assert client.get('/api/settings', headers=headers).get_json() == {'alert_email': 'barn@example.com'}

    def test_unknown_key(self, client, factory, headers_for):
        farm = factory.farm('F1')
        response = client.get('/api/settings/nope', headers=headers_for(factory.owner_of(farm)))
        assert response.status_code == 404

    def test_value_required(self, client, factory, headers_for):
        farm = factory.farm('F1')
        response = client.put('/api/settings/alert_email', headers=headers_for(factory.owner_of(farm)), json={})
        assert response.status_code == 400
        assert response.get_json() == {'error': 'Value is required'}

    def test_schedule_key_is_validated_and_rescheduled(self, client, factory, headers_for, night_check):
        farm = factory.farm('F1')
        headers = headers_for(factory.owner_of(farm))

        bad = client.put(f'/api/settings/{NIGHT_CHECK_SCHEDULE_KEY}', headers=headers, json={'value': 'midnight'})
        assert bad.status_code == 400

        good = client.put(f'/api/settings/{NIGHT_CHECK_SCHEDULE_KEY}', headers=headers, json={'value': '22:10'})
        assert good.status_code == 200
        assert night_check.state.snapshot()[str(farm.id)] == '10 22 * * *'

    def test_settings_are_per_farm(self, client, factory, headers_for):
        f1 = factory.farm('F1')
        f2 = factory.farm('F2')
        client.put('/api/settings/alert_email', headers=headers_for(factory.owner_of(f1)), json={'value': 'a@x.com'})
        response = client.get('/api/settings/alert_email', headers=headers_for(factory.owner_of(f2)))
        assert response.status_code == 404
