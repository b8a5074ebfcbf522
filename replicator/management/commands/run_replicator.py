"""
Management command to run the CDC replicator in the foreground
"""

from django.core.management.base import BaseCommand, CommandError

from replicator.exceptions import ReplicationError
from replicator.replication import ReplicationOrchestrator
from replicator.utils import get_replicator_config


class Command(BaseCommand):
    help = 'Replicate one PostgreSQL table to a target database (bulk copy, then poll the logical slot)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--max-ticks',
            type=int,
            help='Stop after this many poll ticks (default: run until interrupted)',
        )
        parser.add_argument(
            '--skip-bulk-load',
            action='store_true',
            help='Create the slot and start polling without copying existing rows',
        )
        parser.add_argument(
            '--table',
            type=str,
            help='Table to replicate (overrides TABLE_NAME)',
        )
        parser.add_argument(
            '--slot',
            type=str,
            help='Replication slot name (overrides SLOT_NAME)',
        )
        parser.add_argument(
            '--interval',
            type=float,
            help='Seconds between poll ticks (overrides TICK_INTERVAL_SECONDS)',
        )
        parser.add_argument(
            '--replay-dead-letters',
            action='store_true',
            help='Re-apply records from the dead-letter ledger and exit',
        )

    def handle(self, *args, **options):
        overrides = {}
        if options['table']:
            overrides['TABLE_NAME'] = options['table']
        if options['slot']:
            overrides['SLOT_NAME'] = options['slot']
        if options['interval'] is not None:
            overrides['TICK_INTERVAL_SECONDS'] = options['interval']

        config = get_replicator_config(overrides)
        orchestrator = ReplicationOrchestrator(config)

        self.stdout.write(self.style.SUCCESS('\n' + '=' * 80))
        self.stdout.write(self.style.SUCCESS('  CDC REPLICATOR'))
        self.stdout.write(self.style.SUCCESS('=' * 80 + '\n'))
        self.stdout.write(f"Source: {config['SOURCE']['HOST']}:{config['SOURCE']['PORT']}/{config['SOURCE']['NAME']}")
        self.stdout.write(f"Target: {config['TARGET']['HOST']}:{config['TARGET']['PORT']}/{config['TARGET']['NAME']}")
        self.stdout.write(f"Table:  {config['SCHEMA_NAME']}.{config['TABLE_NAME']}  (slot {config['SLOT_NAME']})\n")

        try:
            if options['replay_dead_letters']:
                summary = orchestrator.replay_dead_letters()
                self.stdout.write(self.style.SUCCESS(
                    f"✅ Replayed {summary['replayed']} dead letters ({summary['failed']} still failing)"
                ))
                return

            orchestrator.start(
                skip_bulk_load=options['skip_bulk_load'],
                max_ticks=options['max_ticks'],
            )
            self._print_summary(orchestrator)
        except ReplicationError as e:
            raise CommandError(f'❌ Replication failed: {e}')
        finally:
            orchestrator.close()

    def _print_summary(self, orchestrator):
        status = orchestrator.get_status()
        poller_stats = status['poller']['stats'] if status['poller'] else {}

        self.stdout.write('\n' + '-' * 80)
        if status['rows_bulk_loaded'] is not None:
            self.stdout.write(f"Rows bulk loaded:  {status['rows_bulk_loaded']}")
        self.stdout.write(f"Ticks:             {poller_stats.get('ticks', 0)}")
        self.stdout.write(f"Changes received:  {poller_stats.get('changes_received', 0)}")
        self.stdout.write(f"Events applied:    {poller_stats.get('events_applied', 0)}")

        errors = poller_stats.get('decode_errors', 0) + poller_stats.get('apply_errors', 0)
        if errors:
            self.stdout.write(self.style.WARNING(f'⚠️  {errors} changes failed to decode or apply'))
        else:
            self.stdout.write(self.style.SUCCESS('✅ Replication stopped cleanly'))
