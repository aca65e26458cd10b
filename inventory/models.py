import uuid

from django.core.validators import MinValueValidator
from django.db import models

from authentication.models import Store, TimeStampedModel


class MenuItem(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='menu_items')
    name = models.CharField(max_length=255)
    description = models.TextField(null=True, blank=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(0)])
    image_url = models.CharField(max_length=500, null=True, blank=True)
    # Free text, grouped on the client
    category = models.CharField(max_length=100, null=True, blank=True)
    is_available = models.BooleanField(default=True)

    class Meta:
        db_table = 'menu_items'
        ordering = ['category', 'name']
        indexes = [
            models.Index(fields=['store', 'category'], name='menu_items_store_category_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.store.name})"
