import sys
import os
import argparse
import pandas as pd

# --- GPS Block ---
script_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.join(script_dir, '..')
sys.path.insert(0, project_root)

from farmtrack import create_app, db
from farmtrack.models import Animal, Farm, ANIMAL_TYPES

# --- Mappings for the animal roster CSV ---
CSV_COLUMN_MAP = {
    'tag_col': 'tag_number',
    'name_col': 'name',
    'type_col': 'type',
    'age_col': 'age',
    'gender_col': 'gender',
}


def _optional(row, column):
    """Returns the cell value, or None for a missing column or an empty (NaN) cell."""
    if column not in row or pd.isna(row[column]):
        return None
    return row[column]


def seed_animals(farm_id, csv_path):
    """
    Imports an animal roster into a farm. Rows whose tag already exists on
    the farm, or whose type is unknown, are skipped.

    Returns:
        int: number of animals added.
    """
    farm = db.session.get(Farm, farm_id)
    if farm is None:
        print(f"Error: farm {farm_id} not found. Aborting.")
        return 0

    print(f"Reading animal roster from {csv_path}...")
    try:
        df = pd.read_csv(csv_path, dtype={CSV_COLUMN_MAP['tag_col']: str})
        print(f"Found {len(df)} rows in CSV.")
    except FileNotFoundError:
        print(f"Error: {csv_path} not found. Aborting.")
        return 0

    existing_tags = {tag for (tag,) in db.session.query(Animal.tag_number).filter_by(farm_id=farm_id)}
    added = 0

    for index, row in df.iterrows():
        tag_number = str(row[CSV_COLUMN_MAP['tag_col']]).strip()
        animal_type = str(row[CSV_COLUMN_MAP['type_col']]).strip().capitalize()

        if tag_number in existing_tags:
            print(f"  > WARNING: tag '{tag_number}' already exists on farm {farm.name}. Skipping row {index+1}.")
            continue
        if animal_type not in ANIMAL_TYPES:
            print(f"  > WARNING: unknown type '{animal_type}'. Skipping row {index+1}.")
            continue

        age = _optional(row, CSV_COLUMN_MAP['age_col'])
        db.session.add(Animal(
            tag_number=tag_number,
            name=str(row[CSV_COLUMN_MAP['name_col']]).strip(),
            type=animal_type,
            age=float(age) if age is not None else None,
            gender=_optional(row, CSV_COLUMN_MAP['gender_col']),
            farm_id=farm_id,
        ))
        existing_tags.add(tag_number)
        added += 1

    print(f"\nCommitting {added} staged animals to the database...")
    db.session.commit()
    print("Animal seeding complete!")
    return added


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Import an animal roster CSV into a farm.')
    parser.add_argument('farm_id', type=int)
    parser.add_argument('csv_path')
    args = parser.parse_args()

    os.environ.setdefault('FARMTRACK_SCHEDULER_ENABLED', '0')
    app = create_app()
    with app.app_context():
        seed_animals(args.farm_id, args.csv_path)
