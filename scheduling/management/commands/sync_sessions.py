"""
Management command to generate sessions for plans that have none.
"""

from django.core.management.base import BaseCommand, CommandError

from scheduling import services
from scheduling.models import Branch


class Command(BaseCommand):
    help = 'Generate sessions for plans that do not have any yet'

    def add_arguments(self, parser):
        parser.add_argument(
            '--branch',
            type=int,
            default=None,
            help='Only process plans of this branch id'
        )

    def handle(self, *args, **options):
        branch = None
        if options['branch'] is not None:
            try:
                branch = Branch.objects.get(pk=options['branch'])
            except Branch.DoesNotExist:
                raise CommandError(f"Branch {options['branch']} does not exist")

        self.stdout.write('Generating sessions for plans without sessions...')

        synced = services.sync_plans_without_sessions(branch=branch)

        self.stdout.write(
            self.style.SUCCESS(f'Successfully generated sessions for {synced} plan(s)')
        )
