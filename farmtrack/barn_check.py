"""
Barn return compliance check.

Compares a farm's animal roster with the return logs recorded for one
calendar day and raises a single notification listing every animal that
has no log for that day.
"""
from dataclasses import dataclass, field
import logging

from . import db
from .models import Animal, Farm, Notification, ReturnLog
from .utils import format_day, get_today

logger = logging.getLogger(__name__)

BARN_CHECK_TITLE = 'Barn Check Alert'
NIGHT_RETURN_TITLE = 'Night Return Alert'


@dataclass
class NightCheckResult:
    """Outcome of one compliance check for one farm and day."""
    farm_id: int
    date: object
    missing_animals: list = field(default_factory=list)
    notification: object = None
    notification_id: int = None

    @property
    def alerts_generated(self):
        return 1 if self.notification is not None else 0

    @property
    def summary(self):
        if self.missing_animals and self.notification is not None:
            return f'1 alert generated for {len(self.missing_animals)} missing barn entries.'
        if self.missing_animals:
            return f'{len(self.missing_animals)} missing barn entries, but the farm has no recipient for alerts.'
        return 'All animals have returned to the barn.'

    def to_dict(self):
        return {
            'farm_id': self.farm_id,
            'date': format_day(self.date),
            'missing_animals': list(self.missing_animals),
            'alerts_generated': self.alerts_generated,
            'notification_id': self.notification_id,
        }


def find_missing_animals(farm_id, day):
    """
    Returns the farm's animals that have no return log at all for the given day.
    Any existing log counts, whatever its 'returned' flag says.
    """
    animals = Animal.query.filter_by(farm_id=farm_id).order_by(Animal.id).all()
    if not animals:
        return []

    logged_ids = {
        animal_id for (animal_id,) in db.session.query(ReturnLog.animal_id).filter(
            ReturnLog.farm_id == farm_id,
            ReturnLog.date == day,
        )
    }
    return [animal for animal in animals if animal.id not in logged_ids]


def check_return_status(farm_id, user_id=None, today=None, title=BARN_CHECK_TITLE):
    """
    Runs the barn return check for one farm.

    Args:
        farm_id (int): The farm to check.
        user_id (int): Recipient of the alert. Defaults to the farm owner.
        today (datetime.date): Day under evaluation. Defaults to the local date.
        title (str): Notification title.

    Returns:
        NightCheckResult: missing animal labels and the notification, if one was created.
    """
    day = today or get_today()
    missing = find_missing_animals(farm_id, day)
    result = NightCheckResult(farm_id=farm_id, date=day, missing_animals=[a.label for a in missing])

    if not missing:
        return result

    recipient_id = user_id
    if recipient_id is None:
        farm = db.session.get(Farm, farm_id)
        recipient_id = farm.owner_id if farm else None
    if recipient_id is None:
        logger.warning("Farm %s has %d missing animals but no alert recipient", farm_id, len(missing))
        return result

    message = (
        f"The following animals have not returned to the barn as of today ({format_day(day)}):\n"
        f"{', '.join(result.missing_animals)}"
    )
    notification = Notification(user_id=recipient_id, farm_id=farm_id, title=title, message=message)
    db.session.add(notification)
    db.session.commit()

    result.notification = notification
    result.notification_id = notification.id
    logger.info("Barn check for farm %s on %s: %d missing", farm_id, format_day(day), len(missing))
    return result


def run_night_check(farm_id=None, today=None):
    """
    Night check for the scheduler and the manual trigger.
    Without a farm id every farm that has animals is checked.
    """
    if farm_id is not None:
        farm = db.session.get(Farm, farm_id)
        farms = [farm] if farm else []
    else:
        farm_ids = [row[0] for row in db.session.query(Animal.farm_id).distinct().order_by(Animal.farm_id)]
        farms = Farm.query.filter(Farm.id.in_(farm_ids)).order_by(Farm.id).all() if farm_ids else []

    return [
        check_return_status(farm.id, user_id=farm.owner_id, today=today, title=NIGHT_RETURN_TITLE)
        for farm in farms
    ]


def record_barn_return(animal, day, returned=True, return_reason=None):
    """
    Creates or updates the return log of an animal for a day.
    Repeated scans on the same day update the existing row instead of adding a new one.

    Returns:
        tuple: (ReturnLog, created)
    """
    log = ReturnLog.query.filter_by(animal_id=animal.id, farm_id=animal.farm_id, date=day).first()
    if log is not None:
        log.returned = returned
        if return_reason:
            log.return_reason = return_reason
        db.session.commit()
        return log, False

    log = ReturnLog(
        animal_id=animal.id,
        farm_id=animal.farm_id,
        date=day,
        returned=returned,
        return_reason=return_reason,
    )
    db.session.add(log)
    db.session.commit()
    return log, True
