"""Tests for the animal roster seed script."""

import importlib.util
from pathlib import Path

import pytest

from farmtrack.models import Animal

SEED_SCRIPT = Path(__file__).resolve().parent.parent / 'Seed' / 'Seed_Animals.py'


@pytest.fixture
def seed_module():
    spec = importlib.util.spec_from_file_location('seed_animals_script', SEED_SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_imports_roster_and_skips_bad_rows(seed_module, factory, tmp_path):
    farm = factory.farm('F1')
    factory.animal(farm, 'Bessie', '001')
    roster = tmp_path / 'animals.csv'
    roster.write_text(
        'tag_number,name,type,age,gender\n'
        '001,Duplicate,Cow,2,Female\n'
        '002,Clucky,hen,,Female\n'
        '003,Nessie,Dragon,400,\n'
        '004,Dobbin,Horse,7,Male\n'
    )

    added = seed_module.seed_animals(farm.id, str(roster))

    assert added == 2
    animals = {a.tag_number: a for a in Animal.query.filter_by(farm_id=farm.id)}
    assert sorted(animals) == ['001', '002', '004']
    assert animals['002'].type == 'Hen'
    assert animals['002'].age is None
    assert animals['004'].age == 7.0


def test_unknown_farm(seed_module, app, tmp_path):
    assert seed_module.seed_animals(999, str(tmp_path / 'missing.csv')) == 0


def test_missing_file(seed_module, factory, tmp_path):
    farm = factory.farm('F1')
    assert seed_module.seed_animals(farm.id, str(tmp_path / 'missing.csv')) == 0
