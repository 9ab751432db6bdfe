import pytest

from presta_migrate.migrate_log import MigrationLog
from presta_migrate.presta.models import Manufacturer


@pytest.fixture
def log():
    return MigrationLog(brand_debug=True)


@pytest.fixture
def acme():
    return Manufacturer(id=7, name="  Acme <b>Tools</b> ", logo_url_candidates=[])
