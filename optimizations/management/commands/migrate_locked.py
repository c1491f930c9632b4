"""
Run migrations under a global PostgreSQL advisory lock so several instances
starting at once apply them one at a time.
Usage: python manage.py migrate_locked [migrate options]
"""
from contextlib import contextmanager

from django.core.management import call_command
from django.core.management.base import BaseCommand
from django.db import connection

MIGRATION_LOCK_KEY = 7243108812


@contextmanager
def advisory_lock(key):
    """Hold pg_advisory_lock(key) for the duration; no lock on other backends."""
    if connection.vendor != 'postgresql':
        yield
        return
    with connection.cursor() as cursor:
        cursor.execute('SELECT pg_advisory_lock(%s)', [key])
    try:
        yield
    finally:
        with connection.cursor() as cursor:
            cursor.execute('SELECT pg_advisory_unlock(%s)', [key])


class Command(BaseCommand):
    help = 'Apply migrations while holding a global advisory lock'

    def add_arguments(self, parser):
        parser.add_argument('app_label', nargs='?')
        parser.add_argument('migration_name', nargs='?')

    def handle(self, *args, **options):
        migrate_args = [a for a in (options['app_label'], options['migration_name']) if a]
        self.stdout.write('Waiting for migration lock...')
        with advisory_lock(MIGRATION_LOCK_KEY):
            self.stdout.write('Migration lock acquired')
            call_command('migrate', *migrate_args, verbosity=options['verbosity'], interactive=False)
        self.stdout.write(self.style.SUCCESS('Migrations applied'))
