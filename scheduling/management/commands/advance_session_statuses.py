"""
Management command to move sessions to in-progress or completed.

This command should be run periodically (e.g., every few minutes via cron)
so session statuses follow the wall clock.
"""

from django.core.management.base import BaseCommand
from scheduling import services


class Command(BaseCommand):
    help = 'Mark running sessions as in progress and finished sessions as completed'

    def handle(self, *args, **options):
        started, completed = services.advance_session_statuses()

        self.stdout.write(
            self.style.SUCCESS(
                f'{started} session(s) started, {completed} session(s) completed'
            )
        )
