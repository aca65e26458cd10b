import logging

from django.core.management.base import BaseCommand

from orders.notifications import EmailNotifier, deliver_pending, purge_finished

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Deliver queued order notifications (confirmation, status updates, pickup OTP)."

    def add_arguments(self, parser):
        parser.add_argument('--limit', type=int, default=100, help="Maximum notifications to process in this run")
        parser.add_argument(
            '--purge-older-than', type=int, metavar='DAYS', default=None,
            help="Also delete sent and failed notifications last touched more than DAYS days ago",
        )

    def handle(self, *args, **options):
        sent, failed = deliver_pending(EmailNotifier(), limit=options['limit'])
        logger.info(f"Notification run finished: {sent} sent, {failed} failed")
        self.stdout.write(self.style.SUCCESS(f"Sent {sent} notification(s), {failed} failed."))

        days = options['purge_older_than']
        if days is not None:
            purged = purge_finished(days)
            logger.info(f"Purged {purged} finished notification(s) older than {days} day(s)")
            self.stdout.write(self.style.SUCCESS(f"Purged {purged} notification(s)."))
