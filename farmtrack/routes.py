from flask import Blueprint, request, jsonify, g
from sqlalchemy.exc import IntegrityError
import logging

from .models import Farm, Animal, ReturnLog, Setting, Notification, ANIMAL_TYPES, GENDERS, NIGHT_CHECK_SCHEDULE_KEY
from . import db
from .auth import auth_required, require_farm
from .barn_check import check_return_status, record_barn_return
from .scheduler import night_check, SchedulerError
from .utils import find_animal_by_tag, get_today, format_day, parse_day, is_valid_schedule

logger = logging.getLogger(__name__)

NIGHT_CHECK_DESCRIPTION = 'Daily night return check schedule time (24-hour format)'

# Create a Blueprint. 'api' is the name of the blueprint.
api = Blueprint('api', __name__)

def _json_object():
    """Returns the request body if it is a JSON object, else None."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None

def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)

# --- General Routes ---

@api.route('/')
def home():
    """A simple test route to confirm the API is running."""
    return "The FarmTrack Backend is running!"

@api.route('/health')
def health():
    return 'OK'

# --- Farm Routes ---

@api.route('/farms', methods=['POST'])
@auth_required('admin')
def register_farm():
    """
    Registers a farm for the calling admin. Expects JSON with a 'name' and an optional 'location'.
    The farm starts with the default night check schedule.
    """
    if g.user.farm_id is not None:
        return jsonify({'error': 'You already have a registered farm.'}), 409

    data = _json_object()
    name = data.get('name') if data else None
    if not isinstance(name, str) or not name.strip():
        return jsonify({'error': "The 'name' field is required."}), 400
    location = data.get('location')
    if location is not None and not isinstance(location, str):
        return jsonify({'error': "The 'location' field must be text."}), 400

    default_time = night_check.default_time
    try:
        farm = Farm(name=name.strip(), location=location, owner_id=g.user.id)
        db.session.add(farm)
        db.session.flush() # Assigns an ID to the new farm

        g.user.farm_id = farm.id
        db.session.add(Setting(
            key=NIGHT_CHECK_SCHEDULE_KEY,
            value=default_time,
            description=NIGHT_CHECK_DESCRIPTION,
            farm_id=farm.id,
        ))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("Error registering farm")
        return jsonify({'error': f'An unexpected error occurred: {str(e)}'}), 500

    try:
        night_check.reschedule(farm.id, default_time)
    except SchedulerError:
        # The setting is stored, so the job is picked up again on the next restart.
        logger.warning("Farm %s registered without a live night check job", farm.id)

    return jsonify({
        'message': 'Farm registered successfully!',
        'farm': farm.to_dict(),
        'night_check_schedule': default_time,
    }), 201

@api.route('/farms/mine', methods=['GET'])
@auth_required()
def get_my_farm():
    denied = require_farm()
    if denied:
        return denied
    farm = db.session.get(Farm, g.user.farm_id)
    if farm is None:
        return jsonify({'error': 'Farm not found'}), 404
    return jsonify(farm.to_dict())

# --- Animal Routes ---

@api.route('/animals', methods=['GET'])
@auth_required()
def get_animals():
    """Lists the animals of the caller's farm."""
    denied = require_farm()
    if denied:
        return denied
    animals = Animal.query.filter_by(farm_id=g.user.farm_id).order_by(Animal.tag_number).all()
    return jsonify([animal.to_dict() for animal in animals])

@api.route('/animals', methods=['POST'])
@auth_required('admin', 'worker')
def add_animal():
    """Creates an animal. Expects JSON with 'tag_number', 'name' and 'type'."""
    denied = require_farm()
    if denied:
        return denied

    data = _json_object()
    required_fields = ['tag_number', 'name', 'type']
    if not data or not all(data.get(field) for field in required_fields):
        return jsonify({'error': 'Missing required fields: tag_number, name, type'}), 400
    if not isinstance(data['name'], str) or not data['name'].strip():
        return jsonify({'error': "The 'name' field must be text."}), 400
    if data['type'] not in ANIMAL_TYPES:
        return jsonify({'error': f"Invalid animal type. Use one of: {', '.join(ANIMAL_TYPES)}"}), 400
    if data.get('gender') is not None and data['gender'] not in GENDERS:
        return jsonify({'error': f"Invalid gender. Use one of: {', '.join(GENDERS)}"}), 400
    if data.get('age') is not None and not _is_number(data['age']):
        return jsonify({'error': "The 'age' field must be a number."}), 400

    farm_id = g.user.farm_id
    tag_number = str(data['tag_number']).strip()

    # --- Business Logic: tag numbers are unique within a farm ---
    if find_animal_by_tag(farm_id, tag_number):
        return jsonify({'error': f"An animal with tag '{tag_number}' already exists on this farm."}), 409

    try:
        new_animal = Animal(
            tag_number=tag_number,
            name=data['name'].strip(),
            type=data['type'],
            age=data.get('age'),
            gender=data.get('gender'),
            farm_id=farm_id,
        )
        db.session.add(new_animal)
        db.session.commit()
        return jsonify({'message': 'Animal created successfully!', 'animal': new_animal.to_dict()}), 201
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': f"An animal with tag '{tag_number}' already exists on this farm."}), 409
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': f'An unexpected error occurred: {str(e)}'}), 500

# --- Return Log Routes ---

@api.route('/returnlogs', methods=['GET'])
@auth_required()
def get_return_logs():
    """Lists the return logs of the caller's farm, optionally for one 'date' (YYYY-MM-DD)."""
    denied = require_farm()
    if denied:
        return denied

    query = ReturnLog.query.filter_by(farm_id=g.user.farm_id)
    date_str = request.args.get('date')
    if date_str:
        try:
            query = query.filter_by(date=parse_day(date_str))
        except ValueError:
            return jsonify({'error': 'Invalid date format. Use YYYY-MM-DD.'}), 400

    logs = query.order_by(ReturnLog.date.desc(), ReturnLog.animal_id).all()
    return jsonify([log.to_dict() for log in logs])

@api.route('/returnlogs/animal/<int:animal_id>', methods=['GET'])
@auth_required()
def get_return_logs_by_animal(animal_id):
    denied = require_farm()
    if denied:
        return denied

    animal = Animal.query.filter_by(id=animal_id, farm_id=g.user.farm_id).first()
    if animal is None:
        return jsonify({'error': 'Animal not found or not in your farm'}), 404

    logs = ReturnLog.query.filter_by(animal_id=animal.id).order_by(ReturnLog.date.desc()).all()
    return jsonify([log.to_dict() for log in logs])

@api.route('/returnlogs', methods=['POST'])
@auth_required()
def create_return_log():
    """
    Creates the return log of an animal for a date, or updates it if one already exists.
    Expects JSON with 'animal_id', 'date' and optional 'returned' and 'return_reason'.
    """
    denied = require_farm()
    if denied:
        return denied

    data = _json_object()
    if not data or not data.get('animal_id') or not data.get('date'):
        return jsonify({'error': 'Animal ID and date are required'}), 400
    if not isinstance(data['animal_id'], int) or isinstance(data['animal_id'], bool):
        return jsonify({'error': 'Animal ID must be an integer'}), 400
    if not isinstance(data.get('return_reason'), (str, type(None))):
        return jsonify({'error': 'Return reason must be text'}), 400

    try:
        log_date = parse_day(data['date'])
    except (ValueError, TypeError):
        return jsonify({'error': 'Invalid date format. Use YYYY-MM-DD.'}), 400

    animal = Animal.query.filter_by(id=data['animal_id'], farm_id=g.user.farm_id).first()
    if animal is None:
        return jsonify({'error': 'Animal not found or not in your farm'}), 404

    try:
        log, created = record_barn_return(
            animal,
            log_date,
            returned=bool(data.get('returned', False)),
            return_reason=data.get('return_reason'),
        )
        return jsonify(log.to_dict()), 201 if created else 200
    except Exception as e:
        db.session.rollback()
        logger.exception("Error creating return log")
        return jsonify({'error': 'Failed to create return log'}), 500

@api.route('/returnlogs/<int:log_id>', methods=['PUT'])
@auth_required()
def update_return_log(log_id):
    denied = require_farm()
    if denied:
        return denied

    log = ReturnLog.query.filter_by(id=log_id, farm_id=g.user.farm_id).first()
    if log is None:
        return jsonify({'error': 'Return log not found'}), 404

    data = _json_object() or {}
    if not isinstance(data.get('return_reason'), (str, type(None))):
        return jsonify({'error': 'Return reason must be text'}), 400

    try:
        if 'returned' in data:
            log.returned = bool(data['returned'])
        if 'return_reason' in data:
            log.return_reason = data['return_reason']
        if 'date' in data:
            log.date = parse_day(data['date'])
        db.session.commit()
        return jsonify(log.to_dict())
    except (ValueError, TypeError):
        db.session.rollback()
        return jsonify({'error': 'Invalid date format. Use YYYY-MM-DD.'}), 400
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'A return log for this animal and date already exists.'}), 409

@api.route('/returnlogs/<int:log_id>', methods=['DELETE'])
@auth_required()
def delete_return_log(log_id):
    denied = require_farm()
    if denied:
        return denied

    log = ReturnLog.query.filter_by(id=log_id, farm_id=g.user.farm_id).first()
    if log is None:
        return jsonify({'error': 'Return log not found'}), 404

    db.session.delete(log)
    db.session.commit()
    return jsonify({'message': 'Return log deleted'})

# --- Simulation Routes ---

@api.route('/simulation/scan', methods=['POST'])
@auth_required()
def handle_scan():
    """
    Simulates an RFID scan of an animal at a farm station.
    Expects JSON with 'tag_number' and 'location_id'. A scan at BARN_ENTRANCE marks the
    animal as returned for today; scanning twice the same day keeps a single log.
    """
    denied = require_farm()
    if denied:
        return denied

    data = _json_object()
    if not data or not data.get('tag_number') or not data.get('location_id'):
        return jsonify({'error': 'Missing required fields: tag_number and location_id'}), 400

    farm_id = g.user.farm_id
    animal = find_animal_by_tag(farm_id, str(data['tag_number']))
    if animal is None:
        return jsonify({'error': f"Animal with tag {data['tag_number']} not found in your farm"}), 404

    location = str(data['location_id']).upper()

    if location == 'BARN_ENTRANCE':
        today = get_today()
        existing = ReturnLog.query.filter_by(animal_id=animal.id, farm_id=farm_id, date=today).first()
        was_returned = existing.returned if existing else None
        try:
            log, created = record_barn_return(animal, today, returned=True)
        except Exception as e:
            db.session.rollback()
            logger.exception("Error recording barn return for %s", animal.tag_number)
            return jsonify({'error': f'Internal server error during scan simulation: {str(e)}'}), 500

        if created:
            message = f'Created new night return log (returned) for {animal.name} on {format_day(today)}.'
        elif not was_returned:
            message = f'Updated night return status for {animal.name} on {format_day(today)}.'
        else:
            message = f'{animal.name} was already marked as returned on {format_day(today)}.'
        return jsonify({'message': message, 'returnLog': log.to_dict()}), 201 if created else 200

    if location == 'HEALTH_CHECK_AREA':
        return jsonify({'message': f'Fetched info for {animal.name} at HEALTH_CHECK_AREA.', 'animal': animal.to_dict()})

    if location == 'GENERAL_IDENTIFICATION':
        return jsonify({'message': f'Identified {animal.name}.', 'animal': animal.to_dict()})

    return jsonify({'error': f"Unknown location_id: {data['location_id']}"}), 400

# --- Alert Routes ---

@api.route('/alerts/barn-check', methods=['GET', 'POST'])
@auth_required('admin')
def barn_check_alert():
    """Runs the barn return check for the caller's farm right now and returns the outcome."""
    denied = require_farm()
    if denied:
        return denied

    try:
        result = check_return_status(g.user.farm_id, user_id=g.user.id)
        alerts = [result.notification.to_dict()] if result.notification is not None else []
        return jsonify({
            'message': result.summary,
            'alerts': alerts,
            'missing_animals': result.missing_animals,
        })
    except Exception as e:
        db.session.rollback()
        logger.exception("Barn check failed for farm %s", g.user.farm_id)
        return jsonify({'error': str(e)}), 500

@api.route('/alerts/fencing', methods=['POST'])
@auth_required('admin')
def fencing_alert():
    """Raises a notification that an animal is near the farm boundary. Expects JSON with 'tag_number'."""
    denied = require_farm()
    if denied:
        return denied

    data = _json_object()
    if not data or not data.get('tag_number'):
        return jsonify({'error': "Missing required field: 'tag_number'"}), 400

    animal = find_animal_by_tag(g.user.farm_id, str(data['tag_number']))
    if animal is None:
        return jsonify({'error': 'Animal not found in your farm'}), 404

    try:
        notification = Notification(
            user_id=g.user.id,
            farm_id=g.user.farm_id,
            title='Fencing Alert',
            message=f'Animal "{animal.name}" ({animal.tag_number}) is near the farm boundary.',
        )
        db.session.add(notification)
        db.session.commit()
        return jsonify({'message': 'Fencing alert created', 'notification': notification.to_dict()}), 201
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

# --- Notification Routes ---

@api.route('/notifications', methods=['GET'])
@auth_required()
def get_my_notifications():
    """Lists the notifications of the caller's farm, newest first."""
    denied = require_farm()
    if denied:
        return denied
    notifications = Notification.query.filter_by(farm_id=g.user.farm_id) \
                                      .order_by(Notification.created_at.desc(), Notification.id.desc()).all()
    return jsonify([n.to_dict() for n in notifications])

@api.route('/notifications/<int:notification_id>/read', methods=['PATCH'])
@auth_required()
def mark_notification_as_read(notification_id):
    denied = require_farm()
    if denied:
        return denied

    notification = Notification.query.filter_by(id=notification_id, farm_id=g.user.farm_id).first()
    if notification is None:
        return jsonify({'error': 'Notification not found'}), 404

    notification.is_read = True
    db.session.commit()
    return jsonify({'message': 'Notification marked as read', 'notification': notification.to_dict()})

@api.route('/notifications/<int:notification_id>', methods=['DELETE'])
@auth_required('admin')
def delete_notification(notification_id):
    denied = require_farm()
    if denied:
        return denied

    notification = Notification.query.filter_by(id=notification_id, farm_id=g.user.farm_id).first()
    if notification is None:
        return jsonify({'error': 'Notification not found'}), 404

    db.session.delete(notification)
    db.session.commit()
    return jsonify({'message': 'Notification deleted'})

@api.route('/notifications/night-check', methods=['POST'])
@auth_required('admin')
def run_night_check_all_farms():
    """Manual trigger of the night return check across every farm with animals."""
    report = night_check.trigger_now()
    if not report.ok:
        return jsonify({'error': report.error}), 500
    return jsonify({
        'message': 'Night return check completed.',
        'results': [result.to_dict() for result in report.results],
    })

@api.route('/notifications/test-night-check', methods=['POST'])
@auth_required('admin')
def test_night_check():
    """Manual trigger of the night return check for the caller's farm."""
    denied = require_farm()
    if denied:
        return denied

    report = night_check.trigger_now(g.user.farm_id)
    if not report.ok:
        return jsonify({'error': 'Failed to run night check'}), 500
    return jsonify({
        'message': 'Night check completed successfully for your farm',
        'farm_id': g.user.farm_id,
        'results': [result.to_dict() for result in report.results],
    })

# --- Setting Routes ---

def _save_night_check_schedule(farm_id, schedule):
    """
    Stores the farm's night check time and replaces its live job.
    The setting write is only committed once the job has been replaced.

    Returns:
        Setting: the stored setting.
    Raises:
        SchedulerError: the job could not be replaced; nothing was committed.
    """
    setting = Setting.query.filter_by(key=NIGHT_CHECK_SCHEDULE_KEY, farm_id=farm_id).first()
    previous = setting.value if setting else night_check.default_time
    if setting is None:
        setting = Setting(key=NIGHT_CHECK_SCHEDULE_KEY, farm_id=farm_id)
        db.session.add(setting)
    setting.value = schedule
    setting.description = NIGHT_CHECK_DESCRIPTION
    db.session.flush()

    try:
        night_check.reschedule(farm_id, schedule)
    except SchedulerError:
        db.session.rollback()
        raise

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        # Put the live job back in line with what is still stored.
        night_check.reschedule(farm_id, previous)
        raise
    return setting

@api.route('/settings', methods=['GET'])
@auth_required()
def get_all_settings():
    """Returns every setting of the caller's farm as a {key: value} object."""
    denied = require_farm()
    if denied:
        return denied
    settings = Setting.query.filter_by(farm_id=g.user.farm_id).all()
    return jsonify({setting.key: setting.value for setting in settings})

@api.route('/settings/night-check-schedule', methods=['GET'])
@auth_required()
def get_night_check_schedule():
    denied = require_farm()
    if denied:
        return denied
    setting = Setting.query.filter_by(key=NIGHT_CHECK_SCHEDULE_KEY, farm_id=g.user.farm_id).first()
    return jsonify({'schedule': setting.value if setting else night_check.default_time})

@api.route('/settings/night-check-schedule', methods=['PUT'])
@auth_required('admin')
def update_night_check_schedule():
    """Changes when the caller's farm night check runs. Expects JSON with 'schedule' as HH:MM."""
    denied = require_farm()
    if denied:
        return denied

    data = _json_object()
    schedule = data.get('schedule') if data else None
    if not schedule:
        return jsonify({'error': 'Schedule time is required'}), 400
    if not is_valid_schedule(schedule):
        return jsonify({'error': 'Invalid time format. Use HH:MM (24-hour format)'}), 400

    try:
        setting = _save_night_check_schedule(g.user.farm_id, schedule)
    except Exception:
        logger.exception("Error updating night check schedule for farm %s", g.user.farm_id)
        return jsonify({'error': 'Failed to update night check schedule'}), 500

    return jsonify({
        'schedule': setting.value,
        'message': 'Night check schedule updated successfully and will take effect immediately.'
    })

@api.route('/settings/<key>', methods=['GET'])
@auth_required()
def get_setting(key):
    denied = require_farm()
    if denied:
        return denied
    setting = Setting.query.filter_by(key=key, farm_id=g.user.farm_id).first()
    if setting is None:
        return jsonify({'error': 'Setting not found'}), 404
    return jsonify(setting.to_dict())

@api.route('/settings/<key>', methods=['PUT'])
@auth_required('admin')
def update_setting(key):
    """Creates or overwrites a farm setting. Expects JSON with 'value'."""
    denied = require_farm()
    if denied:
        return denied

    data = _json_object()
    value = data.get('value') if data else None
    if not value:
        return jsonify({'error': 'Value is required'}), 400

    farm_id = g.user.farm_id
    try:
        if key == NIGHT_CHECK_SCHEDULE_KEY:
            if not is_valid_schedule(value):
                return jsonify({'error': 'Invalid time format. Use HH:MM (24-hour format)'}), 400
            setting = _save_night_check_schedule(farm_id, value)
        else:
            setting = Setting.query.filter_by(key=key, farm_id=farm_id).first()
            if setting is None:
                setting = Setting(key=key, farm_id=farm_id, description=f'Setting for {key}')
                db.session.add(setting)
            setting.value = str(value)
            db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Error updating setting %s for farm %s", key, farm_id)
        return jsonify({'error': 'Failed to update setting'}), 500

    return jsonify(setting.to_dict())
