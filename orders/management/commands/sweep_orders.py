import logging

from django.core.management.base import BaseCommand

from orders.services import get_order_workflow

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Cancel unpaid orders past the payment window and uncollected ready orders (no-shows)."

    def handle(self, *args, **options):
        unpaid, no_shows = get_order_workflow().sweep_timeouts()
        logger.info(f"Timeout sweep finished: {unpaid} unpaid cancelled, {no_shows} no-shows")
        self.stdout.write(self.style.SUCCESS(
            f"Cancelled {unpaid} unpaid order(s) and {no_shows} uncollected order(s)."
        ))
