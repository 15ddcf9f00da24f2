import argparse
import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

from schoolhub.db import Base, SessionLocal, engine
from schoolhub.services.bootstrap_service import run_bootstrap


logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')
logger = logging.getLogger('bootstrap')

ALEMBIC_INI = Path(__file__).resolve().parent / 'alembic.ini'


def migrate() -> None:
    command.upgrade(Config(str(ALEMBIC_INI)), 'head')


def main(argv=None):
    parser = argparse.ArgumentParser(description='Prepare the School Hub database and seed the first admin.')
    parser.add_argument('--no-migrate', action='store_true', help='create tables from metadata instead of running migrations')
    args = parser.parse_args(argv)

    if args.no_migrate:
        Base.metadata.create_all(bind=engine)
    else:
        migrate()

    db = SessionLocal()
    try:
        result = run_bootstrap(db)
        if result.get('ran'):
            logger.info('Bootstrap executed: admin=%s grades=%s', result.get('admin'), result.get('grades'))
        else:
            logger.info('Bootstrap skipped: nothing to seed')
    finally:
        db.close()


if __name__ == '__main__':
    main()
